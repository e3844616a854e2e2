"""
Withdrawal relation as a PySNARK circuit.

Composes:
- commitment_circuit: nullifier hash and commitment of the spent deposit
- merkle_inclusion_circuit: the commitment is a leaf under the public root
- range checks: withdrawn and remaining value fit value_bits (non-negative)
- split mode: fresh nullifier and the remainder commitment

Public values are allocated in the order the ledger reads them:
    [nullifierHash, withdrawnValue, stateRoot, declaredDepth, (newCommitmentHash)]
"""

import logging
from typing import Tuple

from pysnark.runtime import LinComb, PrivVal, PubVal

from hash_utils import Compressor, field
from pool_config import RelationConfig
from reference_relation import WithdrawInputs, WithdrawOutputs, range_check
from relation_errors import NullifierReuseError
from zk_merkle import (
    circuit_modulus,
    merkle_inclusion_circuit,
    require_circuit_compressor,
    to_bits_circuit,
    value_of,
)

logger = logging.getLogger(__name__)


def commitment_circuit(value: LinComb, label: LinComb, nullifier: LinComb,
                       secret: LinComb, compressor: Compressor) -> Tuple[LinComb, LinComb]:
    """
    Returns:
        (commitment, nullifier_hash) as LinCombs
    """
    nullifier_hash = compressor.hash1(nullifier)
    precommitment = compressor.hash2(nullifier, secret)
    commitment = compressor.hash3(value, label, precommitment)
    return commitment, nullifier_hash


def range_check_circuit(x: LinComb, bits: int, name: str) -> None:
    """x in [0, 2**bits): pre-check the witness, then bit-decompose."""
    range_check(value_of(x), bits, name)
    to_bits_circuit(x, bits)


def assert_distinct_circuit(a: LinComb, b: LinComb) -> None:
    """
    a != b via an inverse hint: (a - b) * inv == 1.

    Raises:
        NullifierReuseError: a == b on the witness
    """
    diff = a - b
    v = value_of(diff)
    if v == 0:
        raise NullifierReuseError("Remainder commitment must use a fresh nullifier")
    inv = PrivVal(pow(v, -1, circuit_modulus()))
    (diff * inv - 1).assert_zero()


def expose(x: LinComb) -> LinComb:
    """Bind a computed value to a new public value."""
    pub = PubVal(value_of(x))
    (x - pub).assert_zero()
    return pub


def withdraw_circuit(inputs: WithdrawInputs, config: RelationConfig,
                     compressor: Compressor) -> WithdrawOutputs:
    """
    Withdrawal circuit - IN-CIRCUIT.

    Converts the integer inputs to PySNARK values
    (PubVal: public inputs the verifier knows; PrivVal: private witnesses)
    and records every constraint of the relation.

    Returns:
        WithdrawOutputs with the witness values of the public outputs

    Raises:
        RelationUnsatisfied (subclass): witness does not satisfy the relation
    """
    require_circuit_compressor(compressor)
    split = inputs.split

    # ============================================================
    # Private witnesses
    # ============================================================
    label = PrivVal(field(inputs.label))
    existing_value = PrivVal(field(inputs.existing_value))
    existing_nullifier = PrivVal(field(inputs.existing_nullifier))
    existing_secret = PrivVal(field(inputs.existing_secret))
    siblings = [PrivVal(field(s)) for s in inputs.siblings]
    state_index = PrivVal(field(inputs.state_index))

    # 1. Commitment / nullifier derivation
    commitment, nullifier_hash = commitment_circuit(
        existing_value, label, existing_nullifier, existing_secret, compressor
    )
    nullifier_hash_pub = expose(nullifier_hash)

    # ============================================================
    # Public inputs
    # ============================================================
    withdrawn_value = PubVal(field(inputs.withdrawn_value))
    state_root = PubVal(field(inputs.state_root))
    declared_depth = PubVal(field(inputs.declared_depth))

    # 2. Membership
    merkle_inclusion_circuit(
        commitment, state_index, siblings, declared_depth, state_root, config, compressor
    )

    # 3. Balance conservation
    remaining_value = existing_value - withdrawn_value
    range_check_circuit(withdrawn_value, config.value_bits, "withdrawnValue")
    range_check_circuit(remaining_value, config.value_bits, "remainingValue")

    # 4. Remainder commitment
    new_commitment_value = None
    if split:
        new_nullifier = PrivVal(field(inputs.new_nullifier))
        new_secret = PrivVal(field(inputs.new_secret))
        assert_distinct_circuit(existing_nullifier, new_nullifier)
        new_commitment, _ = commitment_circuit(
            remaining_value, label, new_nullifier, new_secret, compressor
        )
        new_commitment_value = value_of(expose(new_commitment))

    logger.info("Recorded withdrawal circuit (split=%s, max_depth=%d)", split, config.max_depth)
    return WithdrawOutputs(
        nullifier_hash=value_of(nullifier_hash_pub),
        remaining_value=value_of(remaining_value),
        root=value_of(state_root),
        new_commitment_hash=new_commitment_value,
    )
