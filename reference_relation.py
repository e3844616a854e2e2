"""
Off-circuit reference evaluator for the withdrawal relation.

This evaluates exactly the relation the PySNARK circuit constrains, over
plain Python integers reduced modulo FIELD_MODULUS. It is used to:
- pre-compute expected roots and public outputs before proving,
- dry-run a withdrawal (an exception here means proving would fail),
- cross-check the circuit (both must agree on every input).

Inclusion semantics (must match zk_merkle.py):
- index is decomposed into max_depth little-endian bits
- at level i the pair (node, sibling) is ordered by bit i
- the level hashes iff sibling != 0, otherwise propagates node
- declared_depth is only bounds-checked, it never gates a level
"""

import logging
from dataclasses import dataclass, field as dataclass_field
from typing import List, Optional, Sequence, Tuple

from commitment_scheme import CommitmentRecord, commitment_hash
from hash_utils import Compressor, field
from pool_config import RelationConfig
from relation_errors import (
    DepthBoundError,
    IndexRangeError,
    NullifierReuseError,
    RangeCheckError,
    RootMismatchError,
    WitnessFormatError,
)

logger = logging.getLogger(__name__)


@dataclass
class WithdrawInputs:
    """
    Public and private inputs of one withdrawal.

    Public: withdrawn_value, state_root, declared_depth.
    Private: everything else. Setting new_nullifier and new_secret
    selects split withdrawal (a remainder commitment is produced).
    """

    withdrawn_value: int
    state_root: int
    declared_depth: int
    label: int
    existing_value: int
    existing_nullifier: int
    existing_secret: int
    siblings: List[int] = dataclass_field(default_factory=list)
    state_index: int = 0
    new_nullifier: Optional[int] = None
    new_secret: Optional[int] = None

    @property
    def split(self) -> bool:
        if (self.new_nullifier is None) != (self.new_secret is None):
            raise WitnessFormatError(
                "Split withdrawal needs both new_nullifier and new_secret"
            )
        return self.new_nullifier is not None

    @property
    def existing_record(self) -> CommitmentRecord:
        return CommitmentRecord(
            value=self.existing_value,
            label=self.label,
            nullifier=self.existing_nullifier,
            secret=self.existing_secret,
        )


@dataclass(frozen=True)
class WithdrawOutputs:
    """Values handed to the ledger (plus the recomputed root)."""

    nullifier_hash: int
    remaining_value: int
    root: int
    new_commitment_hash: Optional[int] = None


# ============================================================
# IndexDecoder / PathSelector / LevelReducer / DepthBoundChecker
# ============================================================

def decode_index(index: int, max_depth: int) -> List[int]:
    """
    Little-endian path bits of a leaf index, exactly max_depth wide.

    Raises:
        IndexRangeError: index does not fit in max_depth bits
    """
    index = field(index)
    if index >= 2 ** max_depth:
        raise IndexRangeError(
            f"Leaf index {index} does not fit in {max_depth} path bits"
        )
    return [(index >> i) & 1 for i in range(max_depth)]


def select_pair(bit: int, current: int, sibling: int) -> Tuple[int, int]:
    """
    Order (current, sibling) into (left, right) by the path bit.

    bit = 0: current is the LEFT child
    bit = 1: current is the RIGHT child
    """
    delta = bit * (sibling - current)
    return field(current + delta), field(sibling - delta)


def reduce_level(current: int, left: int, right: int, sibling: int,
                 compressor: Compressor) -> int:
    """
    Hash the ordered pair, or propagate current when the sibling is the
    zero sentinel. Both candidates are computed, as in the circuit.
    """
    hashed = compressor.hash2(left, right)
    is_zero = 1 if field(sibling) == 0 else 0
    return field(hashed + is_zero * (current - hashed))


def check_depth_bound(declared_depth: int, max_depth: int, depth_bits: int) -> None:
    """
    Assert declared_depth <= max_depth with a depth_bits-wide comparator.

    Raises:
        DepthBoundError: bound violated
    """
    declared = field(declared_depth)
    if declared >= 2 ** depth_bits:
        raise DepthBoundError(
            f"Declared depth {declared_depth} does not fit the {depth_bits}-bit comparator"
        )
    if declared > max_depth:
        raise DepthBoundError(
            f"Declared depth {declared} exceeds max depth {max_depth}"
        )


def structural_depth(siblings: Sequence[int]) -> int:
    """Levels up to and including the highest non-zero sibling."""
    for level in range(len(siblings) - 1, -1, -1):
        if field(siblings[level]) != 0:
            return level + 1
    return 0


# ============================================================
# MerkleInclusionVerifier
# ============================================================

def compute_root(leaf: int, index: int, siblings: Sequence[int], declared_depth: int,
                 config: RelationConfig, compressor: Compressor) -> int:
    """
    Fold a leaf up its sibling path and return the resulting root.

    A wrong index, sibling path or declared depth is NOT rejected here:
    it produces a different, reproducible root.

    Raises:
        WitnessFormatError: sibling path length differs from max_depth
        DepthBoundError: declared depth above max_depth
        IndexRangeError: index wider than max_depth bits
    """
    max_depth = config.max_depth
    if len(siblings) != max_depth:
        raise WitnessFormatError(
            f"Expected {max_depth} siblings, got {len(siblings)}"
        )

    check_depth_bound(declared_depth, max_depth, config.depth_bits)
    bits = decode_index(index, max_depth)

    implied = structural_depth(siblings)
    if implied > field(declared_depth):
        logger.warning(
            "Declared depth %d is below the sibling path's depth %d; "
            "non-zero siblings are folded in regardless",
            declared_depth, implied,
        )

    node = field(leaf)
    for level in range(max_depth):
        sibling = field(siblings[level])
        left, right = select_pair(bits[level], node, sibling)
        node = reduce_level(node, left, right, sibling, compressor)
        logger.debug("level %d: bit=%d propagate=%s", level, bits[level], sibling == 0)
    return node


def verify_inclusion(leaf: int, index: int, siblings: Sequence[int], declared_depth: int,
                     state_root: int, config: RelationConfig,
                     compressor: Compressor) -> int:
    """
    compute_root() followed by the equality check against the public root.

    Raises:
        RootMismatchError: computed root differs from state_root
    """
    root = compute_root(leaf, index, siblings, declared_depth, config, compressor)
    expected = field(state_root)
    if root != expected:
        raise RootMismatchError(
            "Computed root does not match the state root", computed=root, expected=expected
        )
    return root


# ============================================================
# WithdrawRelation
# ============================================================

def range_check(value: int, bits: int, name: str) -> int:
    """
    Assert a field element is an integer in [0, 2**bits).

    Raises:
        RangeCheckError: value outside the window
    """
    value = field(value)
    if value >= 2 ** bits:
        raise RangeCheckError(
            f"{name} is outside the {bits}-bit non-negative range", name=name, bits=bits
        )
    return value


def evaluate_withdraw(inputs: WithdrawInputs, config: RelationConfig,
                      compressor: Compressor) -> WithdrawOutputs:
    """
    Evaluate the withdrawal relation and return its public outputs.

    Steps:
    1. derive existing commitment and nullifier hash
    2. inclusion of the commitment under state_root
    3. range-check withdrawn and remaining value (the only conservation check)
    4. split mode: fresh nullifier, remainder commitment
    5. outputs

    Raises:
        RelationUnsatisfied (subclass): no valid proof exists for these inputs
        WitnessFormatError: malformed inputs
    """
    split = inputs.split

    # 1. Commitment / nullifier derivation
    commitment, nullifier_hash = inputs.existing_record.derive(compressor)

    # 2. Membership
    root = verify_inclusion(
        commitment,
        inputs.state_index,
        inputs.siblings,
        inputs.declared_depth,
        inputs.state_root,
        config,
        compressor,
    )

    # 3. Balance conservation: field subtraction wraps, the range check catches it
    withdrawn = range_check(inputs.withdrawn_value, config.value_bits, "withdrawnValue")
    remaining = range_check(
        field(inputs.existing_value - withdrawn), config.value_bits, "remainingValue"
    )

    # 4. Remainder commitment
    new_commitment = None
    if split:
        if field(inputs.existing_nullifier) == field(inputs.new_nullifier):
            raise NullifierReuseError("Remainder commitment must use a fresh nullifier")
        new_commitment = commitment_hash(
            remaining, inputs.label, inputs.new_nullifier, inputs.new_secret, compressor
        )

    logger.debug("Withdrawal relation satisfied (split=%s)", split)
    return WithdrawOutputs(
        nullifier_hash=nullifier_hash,
        remaining_value=remaining,
        root=root,
        new_commitment_hash=new_commitment,
    )
