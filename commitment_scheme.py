"""
Two-stage commitment and nullifier hashing.

    nullifier_hash = H1(nullifier)
    precommitment  = H2(nullifier, secret)
    commitment     = H3(value, label, precommitment)

The nullifier hash depends on the nullifier only, so it can be published
at withdrawal time without revealing the secret. The precommitment binds
(nullifier, secret) before value and label are mixed in.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

from hash_utils import Compressor, field

logger = logging.getLogger(__name__)


def nullifier_hash(nullifier: int, compressor: Compressor) -> int:
    return compressor.hash1(field(nullifier))


def precommitment(nullifier: int, secret: int, compressor: Compressor) -> int:
    return compressor.hash2(field(nullifier), field(secret))


def commitment_hash(value: int, label: int, nullifier: int, secret: int,
                    compressor: Compressor) -> int:
    pre = precommitment(nullifier, secret, compressor)
    return compressor.hash3(field(value), field(label), pre)


def generate_label(scope: bytes, nonce: bytes, compressor: Compressor) -> int:
    """
    Per-deposit label from the pool scope and a random nonce.

    Both byte strings are read little-endian and reduced into the field.
    """
    scope_fe = field(int.from_bytes(scope, byteorder="little"))
    nonce_fe = field(int.from_bytes(nonce, byteorder="little"))
    return compressor.hash2(scope_fe, nonce_fe)


@dataclass(frozen=True)
class CommitmentRecord:
    """The private contents of a deposit."""

    value: int
    label: int
    nullifier: int
    secret: int

    def derive(self, compressor: Compressor) -> Tuple[int, int]:
        """
        Returns:
            (commitment, nullifier_hash)
        """
        commitment = commitment_hash(
            self.value, self.label, self.nullifier, self.secret, compressor
        )
        return commitment, nullifier_hash(self.nullifier, compressor)

    def __repr__(self) -> str:
        # Never print the nullifier or secret
        return f"CommitmentRecord(value={self.value}, label={self.label}, ...)"
