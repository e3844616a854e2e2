"""
LeanIMT inclusion verification as a PySNARK circuit.

This is the ZK part: given a leaf, a zero-padded sibling path and a leaf
index, we recompute the root INSIDE THE CIRCUIT and enforce that it equals
a public root.

Per level (max_depth fixed iterations, no data-dependent branching):
    bit_i            = i-th bit of index      (boolean-constrained)
    (left, right)    = bit_i ? (sib, node) : (node, sib)
    hashed           = H2(left, right)
    node'            = sib == 0 ? node : hashed   (is-zero gadget + select)

declared_depth is only range-checked against max_depth. It does NOT gate
the levels: a non-zero sibling beyond the true depth is still folded in.
This is the exact semantics of reference_relation.compute_root().

PySNARK Semantics:
==================
- All operations on LinComb (PrivVal/PubVal) create constraints
- Multiplying two LinCombs allocates a witness and one constraint
- Witness values are read back with .val() to build hint witnesses
  (bits, inverses); the constraints make those hints sound
- Each bound is pre-checked on the witness before its constraints are
  emitted, so an unsatisfiable witness raises the same RelationUnsatisfied
  subclass as the reference evaluator
"""

import logging
from functools import lru_cache
from typing import List, Sequence

from pysnark.runtime import LinComb, PrivVal

from hash_utils import FIELD_MODULUS, Compressor, field
from pool_config import RelationConfig
from reference_relation import check_depth_bound, decode_index
from relation_errors import ConfigError, RootMismatchError, WitnessFormatError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def circuit_modulus() -> int:
    """
    Modulus of the active PySNARK backend's field.

    Hints (bit decompositions, inverses) must be computed in the field the
    backend checks constraints in, which is BLS12-381 only for a
    BLS12-381 backend such as zkifbellman.
    """
    from pysnark import runtime

    for owner in (runtime, getattr(runtime, "backend", None)):
        getter = getattr(owner, "get_modulus", None)
        modulus = getter() if getter is not None else None
        if modulus is not None:
            modulus = int(modulus)
            if modulus != FIELD_MODULUS:
                logger.warning(
                    "PySNARK backend field differs from BLS12-381; proofs will "
                    "not verify against the pool's roots"
                )
            return modulus
    logger.debug("PySNARK backend reports no modulus, assuming BLS12-381")
    return FIELD_MODULUS


def value_of(x) -> int:
    """Witness value of a circuit value (or plain int) as a field element."""
    if isinstance(x, LinComb):
        return x.val() % circuit_modulus()
    return field(x)


def require_circuit_compressor(compressor: Compressor) -> None:
    if not compressor.in_circuit:
        raise ConfigError(
            f"{compressor!r} cannot be evaluated in-circuit; "
            "configure the same circuit-capable compressor on both sides"
        )


# ============================================================
# Gadgets
# ============================================================

def assert_bool(b: LinComb) -> None:
    """b * (b - 1) == 0"""
    (b * (b - 1)).assert_zero()


def to_bits_circuit(x: LinComb, bits: int) -> List[LinComb]:
    """
    Little-endian bit decomposition of x into exactly `bits` booleans.

    The recomposition constraint makes the decomposition unique and
    bounds x to [0, 2**bits). Caller pre-checks the bound.
    """
    v = value_of(x)
    out = [PrivVal((v >> i) & 1) for i in range(bits)]
    acc = 0
    for i, b in enumerate(out):
        assert_bool(b)
        acc = acc + b * (2 ** i)
    (x - acc).assert_zero()
    return out


def is_zero_circuit(x: LinComb) -> LinComb:
    """
    Boolean LinComb that is 1 iff x == 0.

    inv is a hint: x^-1 if x != 0 else 0.
        is_zero = 1 - x * inv
        x * is_zero == 0
    """
    v = value_of(x)
    inv = PrivVal(pow(v, -1, circuit_modulus()) if v != 0 else 0)
    is_zero = 1 - x * inv
    (x * is_zero).assert_zero()
    return is_zero


# ============================================================
# IndexDecoder / PathSelector / LevelReducer / DepthBoundChecker
# ============================================================

def index_bits_circuit(index: LinComb, max_depth: int) -> List[LinComb]:
    # Raises IndexRangeError before any constraint is emitted
    decode_index(value_of(index), max_depth)
    return to_bits_circuit(index, max_depth)


def select_circuit(bit: LinComb, current: LinComb, sibling: LinComb):
    """
    Route inputs based on position bit (one multiplication):
    - bit == 0: (left, right) = (current, sibling)
    - bit == 1: (left, right) = (sibling, current)
    """
    delta = bit * (sibling - current)
    return current + delta, sibling - delta


def reduce_level_circuit(current: LinComb, left: LinComb, right: LinComb,
                         sibling: LinComb, compressor: Compressor) -> LinComb:
    # Both candidates are always constrained
    hashed = compressor.hash2(left, right)
    is_zero = is_zero_circuit(sibling)
    return hashed + is_zero * (current - hashed)


def depth_bound_circuit(declared_depth: LinComb, max_depth: int, depth_bits: int) -> None:
    """
    declared_depth <= max_depth as two depth_bits-wide range checks:
    declared_depth itself and (max_depth - declared_depth).
    """
    check_depth_bound(value_of(declared_depth), max_depth, depth_bits)
    to_bits_circuit(declared_depth, depth_bits)
    to_bits_circuit(max_depth - declared_depth, depth_bits)


# ============================================================
# MerkleInclusionVerifier
# ============================================================

def merkle_root_circuit(
    leaf: LinComb,
    index: LinComb,
    siblings: Sequence[LinComb],
    declared_depth: LinComb,
    config: RelationConfig,
    compressor: Compressor,
) -> LinComb:
    """
    Merkle root computation - IN-CIRCUIT.

    Inputs:
    - leaf: LinComb (PrivVal)             leaf value, private witness
    - index: LinComb (PrivVal)            leaf position, private witness
    - siblings: List[LinComb] (PrivVal)   exactly max_depth, zero-padded
    - declared_depth: LinComb             bounds-checked only

    Returns:
        root as a LinComb

    Constraints Generated:
    =====================
    - depth bound: 2 * depth_bits booleans + 2 recompositions
    - index: max_depth booleans + 1 recomposition
    - per level: 1 select + 1 H2 + is-zero (2) + 1 select
    """
    require_circuit_compressor(compressor)
    max_depth = config.max_depth
    if len(siblings) != max_depth:
        raise WitnessFormatError(
            f"Expected {max_depth} siblings, got {len(siblings)}"
        )

    depth_bound_circuit(declared_depth, max_depth, config.depth_bits)
    bits = index_bits_circuit(index, max_depth)

    # Start from leaf and hash upward
    needle = leaf
    for h in range(max_depth):
        left, right = select_circuit(bits[h], needle, siblings[h])
        needle = reduce_level_circuit(needle, left, right, siblings[h], compressor)

    logger.debug("Recorded inclusion circuit over %d levels", max_depth)
    return needle


def merkle_inclusion_circuit(
    leaf: LinComb,
    index: LinComb,
    siblings: Sequence[LinComb],
    declared_depth: LinComb,
    public_root: LinComb,
    config: RelationConfig,
    compressor: Compressor,
) -> LinComb:
    """
    merkle_root_circuit() plus the root equality constraint.

    Final Constraint: needle - public_root == 0
    """
    needle = merkle_root_circuit(leaf, index, siblings, declared_depth, config, compressor)
    computed, expected = value_of(needle), value_of(public_root)
    if computed != expected:
        raise RootMismatchError(
            "Computed root does not match the state root", computed=computed, expected=expected
        )
    (needle - public_root).assert_zero()
    return needle
