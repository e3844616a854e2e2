"""
Coin and withdrawal-input tooling.

- generate: create a coin (value, label, nullifier, secret) and its commitment
- withdraw: rebuild the pool's LeanIMT from a state file, locate the coin,
            and write the proof input for the withdrawal circuit
- check:    run the off-circuit reference evaluator on a withdrawal file

File formats (all field elements as decimal strings):

coin file:
    {"coin": {"value", "nullifier", "secret", "label", "commitment"},
     "commitment_hex": "0x..."}
state file:
    {"commitments": ["...", ...], "scope": "pool_scope"}
withdrawal file:
    {"withdrawnValue", "label", "value", "nullifier", "secret", "stateRoot",
     "stateIndex", "stateSiblings", "actualDepth", ["newNullifier", "newSecret"]}
"""

import argparse
import json
import logging
import secrets
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from commitment_scheme import CommitmentRecord, generate_label
from hash_utils import Compressor, compressor_names, field
from lean_imt import LeanIMT
from pool_config import RelationConfig
from reference_relation import WithdrawInputs, evaluate_withdraw
from relation_errors import CoinNotFoundError, RelationError, WitnessFormatError

logger = logging.getLogger(__name__)

COIN_VALUE = 1000000000  # 1 XLM in stroops


@dataclass(frozen=True)
class Coin:
    value: int
    nullifier: int
    secret: int
    label: int
    commitment: int

    @property
    def record(self) -> CommitmentRecord:
        return CommitmentRecord(self.value, self.label, self.nullifier, self.secret)

    @property
    def commitment_hex(self) -> str:
        return "0x" + self.commitment.to_bytes(32, byteorder="big").hex()


def _random_source(rng):
    return rng if rng is not None else secrets.SystemRandom()


def generate_coin(scope: bytes, compressor: Compressor, value: int = COIN_VALUE,
                  rng=None) -> Coin:
    """
    Create a fresh coin for a pool scope.

    Args:
        scope: pool scope bytes, mixed into the label
        rng: object with getrandbits(); defaults to the OS CSPRNG
    """
    rng = _random_source(rng)
    nullifier = rng.getrandbits(64)
    secret = rng.getrandbits(64)
    nonce = rng.getrandbits(256).to_bytes(32, byteorder="little")
    label = generate_label(scope, nonce, compressor)
    commitment, _ = CommitmentRecord(value, label, nullifier, secret).derive(compressor)
    logger.info("Generated coin with commitment %s", hex(commitment))
    return Coin(value, nullifier, secret, label, commitment)


def build_withdrawal(
    coin: Coin,
    commitments: Sequence[int],
    config: RelationConfig,
    compressor: Compressor,
    withdrawn_value: Optional[int] = None,
    new_nullifier: Optional[int] = None,
    new_secret: Optional[int] = None,
) -> WithdrawInputs:
    """
    Proof input for spending `coin` from a pool holding `commitments`.

    Defaults to withdrawing the whole value. Passing new_nullifier and
    new_secret makes it a split withdrawal.

    Raises:
        CoinNotFoundError: coin's commitment is not in the state
        ConfigError: the state's tree is deeper than max_depth
    """
    commitment, _ = coin.record.derive(compressor)
    if commitment != coin.commitment:
        raise WitnessFormatError("Coin commitment does not match its contents")

    tree = LeanIMT(compressor, commitments)
    index = tree.index_of(commitment)
    if index is None:
        raise CoinNotFoundError("The coin's commitment was not found in the state file")

    proof = tree.proof(index, config.max_depth)
    logger.info("Found coin at index %d of %d (depth %d)", index, tree.size, proof.depth)
    return WithdrawInputs(
        withdrawn_value=coin.value if withdrawn_value is None else withdrawn_value,
        state_root=proof.root,
        declared_depth=proof.depth,
        label=coin.label,
        existing_value=coin.value,
        existing_nullifier=coin.nullifier,
        existing_secret=coin.secret,
        siblings=proof.siblings,
        state_index=index,
        new_nullifier=new_nullifier,
        new_secret=new_secret,
    )


# ============================================================
# JSON documents
# ============================================================

def parse_field(raw: Any, what: str) -> int:
    """Decimal string, 0x-prefixed hex string or int -> field element."""
    if isinstance(raw, bool):
        raise WitnessFormatError(f"{what}: expected an integer, got {raw!r}")
    if isinstance(raw, int):
        return field(raw)
    if isinstance(raw, str):
        try:
            if raw.lower().startswith("0x"):
                return field(int(raw, 16))
            return field(int(raw, 10))
        except ValueError:
            pass
    raise WitnessFormatError(f"{what}: expected an integer, got {raw!r}")


def _require(doc: Dict[str, Any], key: str, where: str) -> Any:
    try:
        return doc[key]
    except (KeyError, TypeError):
        raise WitnessFormatError(f"{where}: missing {key!r}") from None


def coin_to_json(coin: Coin) -> Dict[str, Any]:
    return {
        "coin": {
            "value": str(coin.value),
            "nullifier": str(coin.nullifier),
            "secret": str(coin.secret),
            "label": str(coin.label),
            "commitment": str(coin.commitment),
        },
        "commitment_hex": coin.commitment_hex,
    }


def coin_from_json(doc: Dict[str, Any]) -> Coin:
    data = _require(doc, "coin", "coin file")
    return Coin(**{
        key: parse_field(_require(data, key, "coin"), key)
        for key in ("value", "nullifier", "secret", "label", "commitment")
    })


def state_from_json(doc: Dict[str, Any]) -> Tuple[List[int], str]:
    """Returns (commitments, scope)."""
    raw = _require(doc, "commitments", "state file")
    if not isinstance(raw, list):
        raise WitnessFormatError("state file: 'commitments' must be a list")
    commitments = [parse_field(c, f"commitment {i}") for i, c in enumerate(raw)]
    return commitments, doc.get("scope", "")


def withdrawal_to_json(inputs: WithdrawInputs) -> Dict[str, Any]:
    doc = {
        "withdrawnValue": str(inputs.withdrawn_value),
        "label": str(inputs.label),
        "value": str(inputs.existing_value),
        "nullifier": str(inputs.existing_nullifier),
        "secret": str(inputs.existing_secret),
        "stateRoot": str(inputs.state_root),
        "stateIndex": str(inputs.state_index),
        "stateSiblings": [str(s) for s in inputs.siblings],
        "actualDepth": str(inputs.declared_depth),
    }
    if inputs.split:
        doc["newNullifier"] = str(inputs.new_nullifier)
        doc["newSecret"] = str(inputs.new_secret)
    return doc


def withdrawal_from_json(doc: Dict[str, Any]) -> WithdrawInputs:
    def get(key):
        return parse_field(_require(doc, key, "withdrawal file"), key)

    siblings = _require(doc, "stateSiblings", "withdrawal file")
    if not isinstance(siblings, list):
        raise WitnessFormatError("withdrawal file: 'stateSiblings' must be a list")

    optional = {}
    for key, attr in (("newNullifier", "new_nullifier"), ("newSecret", "new_secret")):
        if key in doc:
            optional[attr] = get(key)

    return WithdrawInputs(
        withdrawn_value=get("withdrawnValue"),
        state_root=get("stateRoot"),
        declared_depth=get("actualDepth"),
        label=get("label"),
        existing_value=get("value"),
        existing_nullifier=get("nullifier"),
        existing_secret=get("secret"),
        siblings=[parse_field(s, f"sibling {i}") for i, s in enumerate(siblings)],
        state_index=get("stateIndex"),
        **optional,
    )


def read_json(path: str) -> Dict[str, Any]:
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise WitnessFormatError(f"Failed to parse {path}: {e}") from e


def write_json(path: str, doc: Dict[str, Any]) -> None:
    with open(path, "w") as f:
        json.dump(doc, f, indent=2)
        f.write("\n")


# ============================================================
# CLI
# ============================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coinutils",
        description="Generate privacy-pool coins and withdrawal proof inputs",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--hash", choices=compressor_names(), default=None,
                        help="compressor (default: PRIVACY_POOL_HASH or poseidon)")
    parser.add_argument("--max-depth", type=int, default=None,
                        help="sibling path length (default: PRIVACY_POOL_MAX_DEPTH or 32)")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="generate a new coin")
    gen.add_argument("scope")
    gen.add_argument("output", nargs="?", default="coin.json")
    gen.add_argument("--value", type=int, default=COIN_VALUE)

    wd = sub.add_parser("withdraw", help="build withdrawal proof input")
    wd.add_argument("coin_file")
    wd.add_argument("state_file")
    wd.add_argument("output", nargs="?", default="withdrawal.json")
    wd.add_argument("--amount", type=int, default=None,
                    help="value to withdraw (default: the whole coin)")
    wd.add_argument("--split", action="store_true",
                    help="keep the remainder as a new coin with a fresh nullifier")
    wd.add_argument("--remainder-coin", default="remainder_coin.json",
                    help="where --split writes the remainder coin")

    chk = sub.add_parser("check", help="evaluate a withdrawal file off-circuit")
    chk.add_argument("withdrawal_file")
    return parser


def _cmd_generate(args, config: RelationConfig) -> None:
    coin = generate_coin(args.scope.encode(), config.compressor(), value=args.value)
    write_json(args.output, coin_to_json(coin))
    print("Generated coin:")
    print(f"  Value: {coin.value}")
    print(f"  Label: {coin.label}")
    print(f"  Commitment: {coin.commitment_hex}")
    print(f"  Saved to: {args.output}")


def _cmd_withdraw(args, config: RelationConfig) -> None:
    compressor = config.compressor()
    coin = coin_from_json(read_json(args.coin_file))
    commitments, _scope = state_from_json(read_json(args.state_file))

    new_nullifier = new_secret = None
    if args.split:
        rng = _random_source(None)
        new_nullifier, new_secret = rng.getrandbits(64), rng.getrandbits(64)

    inputs = build_withdrawal(
        coin, commitments, config, compressor,
        withdrawn_value=args.amount,
        new_nullifier=new_nullifier,
        new_secret=new_secret,
    )
    outputs = evaluate_withdraw(inputs, config, compressor)
    write_json(args.output, withdrawal_to_json(inputs))

    print("Withdrawal created:")
    print(f"  Withdrawn value: {inputs.withdrawn_value}")
    print(f"  State root: {inputs.state_root}")
    print(f"  Commitment index: {inputs.state_index}")
    print(f"  Snark input saved to: {args.output}")
    if args.split:
        remainder = Coin(
            outputs.remaining_value, new_nullifier, new_secret, coin.label,
            outputs.new_commitment_hash,
        )
        write_json(args.remainder_coin, coin_to_json(remainder))
        print(f"  Remainder coin ({remainder.value}) saved to: {args.remainder_coin}")


def _cmd_check(args, config: RelationConfig) -> None:
    inputs = withdrawal_from_json(read_json(args.withdrawal_file))
    outputs = evaluate_withdraw(inputs, config, config.compressor())
    print("Relation satisfied:")
    print(f"  Nullifier hash: {outputs.nullifier_hash}")
    print(f"  Remaining value: {outputs.remaining_value}")
    if outputs.new_commitment_hash is not None:
        print(f"  New commitment: {outputs.new_commitment_hash}")


COMMANDS = {
    "generate": _cmd_generate,
    "withdraw": _cmd_withdraw,
    "check": _cmd_check,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = RelationConfig.from_env().with_overrides(
            hash_name=args.hash, max_depth=args.max_depth
        )
        COMMANDS[args.command](args, config)
    except (RelationError, OSError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
