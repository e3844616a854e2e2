"""
Field arithmetic and compression functions.

Every value in the relation is an element of the BLS12-381 scalar field.
The compression functions H1/H2/H3 are pluggable: the relation only needs
an opaque, deterministic map F^n -> F.

Two compressors are provided:
1. Sha256Compressor: plain Python SHA-256, reduced into the field.
   OFF-CIRCUIT ONLY (cannot be expressed over PySNARK values).
2. PoseidonCompressor: the PySNARK Poseidon gadget.
   Works IN-CIRCUIT on LinComb values and OFF-CIRCUIT on integers.

The witness builder and the circuit MUST use the same compressor.
Mixing them produces roots that never match, which is indistinguishable
from a forged path.
"""

import hashlib
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from relation_errors import ConfigError

logger = logging.getLogger(__name__)

# BLS12-381 scalar field modulus (the field the pool's circuits are compiled for)
FIELD_MODULUS = 0x73EDA753299D7D483339D80809A1D80553BDA402FFFE5BFEFFFFFFFF00000001


def field(val: int) -> int:
    """
    Convert a Python int to a field element by reducing modulo FIELD_MODULUS.

    Negative integers wrap around, exactly like field subtraction does.
    """
    return val % FIELD_MODULUS


def sha256_to_field(*values: int) -> int:
    """
    Hash integers using SHA-256 and map into field (OFF-CIRCUIT).

    Deterministic: same inputs always produce same output across runs.

    Args:
        *values: integers representing field elements

    Returns:
        integer in [0, FIELD_MODULUS)
    """
    h = hashlib.sha256()
    # Arity prefix keeps H1(a), H2(a, b) and H3(a, b, c) in separate domains
    h.update(len(values).to_bytes(1, byteorder="big"))
    for v in values:
        # Fixed-width (32 bytes) encoding ensures deterministic hashing
        h.update(field(v).to_bytes(32, byteorder="big", signed=False))
    digest = h.digest()
    as_int = int.from_bytes(digest, byteorder="big")
    return as_int % FIELD_MODULUS


class Compressor:
    """
    Pluggable compression function over field elements.

    Subclasses implement compress(); hash1/hash2/hash3 are the three
    arities the commitment scheme and the Merkle tree use.
    """

    name = "abstract"
    # True when compress() accepts PySNARK LinComb values
    in_circuit = False

    def compress(self, values: Sequence[Any]) -> Any:
        raise NotImplementedError

    def hash1(self, a: Any) -> Any:
        return self.compress([a])

    def hash2(self, left: Any, right: Any) -> Any:
        return self.compress([left, right])

    def hash3(self, a: Any, b: Any, c: Any) -> Any:
        return self.compress([a, b, c])

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class Sha256Compressor(Compressor):
    """SHA-256 reduced into the field. Off-circuit tree building and tests."""

    name = "sha256"

    def compress(self, values: Sequence[int]) -> int:
        for v in values:
            if not isinstance(v, int):
                raise TypeError(
                    f"Sha256Compressor works on integers only, got {type(v).__name__}. "
                    "Use a circuit-capable compressor inside the circuit."
                )
        return sha256_to_field(*values)


def _load_poseidon_gadget() -> Callable:
    try:
        from poseidon_hash import poseidon_hash as poseidon_circuit_hash
    except ImportError:
        try:
            # Alternative import path
            from pysnark.poseidon_hash import poseidon_hash as poseidon_circuit_hash
        except ImportError:
            raise ImportError(
                "poseidon_hash not found in PySNARK library. "
                "Install PySNARK with Poseidon support: pip install pysnark[zkinterface] "
                "and set backend: export PYSNARK_BACKEND=zkifbellman"
            )
    return poseidon_circuit_hash


class PoseidonCompressor(Compressor):
    """
    PySNARK's Poseidon gadget.

    In-circuit, every call records the permutation's constraints.
    Off-circuit, integers are lifted to constant LinCombs and the
    first output element is read back, so the witness builder runs the
    identical permutation and parameters as the circuit.
    """

    name = "poseidon"
    in_circuit = True

    def __init__(self) -> None:
        self._gadget: Optional[Callable] = None

    def _get_gadget(self) -> Callable:
        if self._gadget is None:
            self._gadget = _load_poseidon_gadget()
        return self._gadget

    def compress(self, values: Sequence[Any]) -> Any:
        gadget = self._get_gadget()
        if all(isinstance(v, int) for v in values):
            from pysnark.runtime import LinComb

            lifted = [LinComb.ZERO + field(v) for v in values]
            return field(gadget(lifted)[0].val())
        return gadget(list(values))[0]


_COMPRESSORS: Dict[str, Callable[[], Compressor]] = {
    Sha256Compressor.name: Sha256Compressor,
    PoseidonCompressor.name: PoseidonCompressor,
}


def compressor_names() -> List[str]:
    return sorted(_COMPRESSORS)


def get_compressor(name: str) -> Compressor:
    """
    Resolve a compressor by name ("poseidon" or "sha256").

    Raises:
        ConfigError: unknown name
    """
    try:
        factory = _COMPRESSORS[name]
    except KeyError:
        raise ConfigError(
            f"Unknown compressor {name!r}; expected one of {compressor_names()}"
        ) from None
    logger.debug("Using compressor %s", name)
    return factory()
