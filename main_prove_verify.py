"""
Driver that ties everything together:

- Load a withdrawal file produced by `coinutils withdraw`.
- Dry-run the relation off-circuit (fails fast, no constraints recorded).
- Run the PySNARK withdrawal circuit to prove it.

PySNARK Execution Flow:
=======================
1. @snark decorator starts recording all operations as constraints
2. withdraw_circuit() converts inputs to PrivVal/PubVal and records:
   - commitment + nullifier hashing (compressor gadget)
   - inclusion: index bits, per-level select, is-zero, hash
   - range checks on withdrawn and remaining value
   - split mode: nullifier distinctness, remainder commitment
3. @snark decorator stops recording and, depending on PYSNARK_BACKEND,
   compiles the circuit, generates the witness and the proof

The backend must work over the BLS12-381 scalar field
(e.g. PYSNARK_BACKEND=zkifbellman) for the proof to verify on the ledger.
"""

import argparse
import logging
import sys

from pysnark.runtime import snark

from coinutils import read_json, withdrawal_from_json
from pool_config import RelationConfig
from reference_relation import evaluate_withdraw
from relation_errors import RelationError
from zk_withdraw import withdraw_circuit

logger = logging.getLogger(__name__)


def prove_withdrawal(path: str, config: RelationConfig):
    inputs = withdrawal_from_json(read_json(path))
    compressor = config.compressor()

    # OFF-CIRCUIT: expected public outputs (raises if proving cannot succeed)
    expected = evaluate_withdraw(inputs, config, compressor)

    recorded = []

    @snark
    def withdrawal_session():
        recorded.append(withdraw_circuit(inputs, config, compressor))

    # IN-CIRCUIT: all constraints recorded here
    withdrawal_session()
    outputs = recorded[0]
    if outputs != expected:
        raise RelationError(
            "Circuit and reference evaluator disagree; check that both use "
            "the same compressor and field"
        )
    logger.info("Withdrawal proof session complete for %s", path)
    return outputs


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Prove a privacy-pool withdrawal")
    parser.add_argument("withdrawal_file")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        outputs = prove_withdrawal(args.withdrawal_file, RelationConfig.from_env())
    except (RelationError, OSError) as e:
        logger.error("Proving failed: %s", e)
        return 1

    print(f"nullifierHash: {outputs.nullifier_hash}")
    print(f"stateRoot: {outputs.root}")
    if outputs.new_commitment_hash is not None:
        print(f"newCommitmentHash: {outputs.new_commitment_hash}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
