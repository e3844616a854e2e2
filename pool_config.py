"""
Relation parameters shared by the witness builder and the circuit.

Both evaluators must be built from the same RelationConfig: the sibling
path length, the comparator widths and the compressor all change the
relation itself, not just how it is evaluated.

Environment overrides (like PYSNARK_BACKEND for the PySNARK runtime):
- PRIVACY_POOL_MAX_DEPTH
- PRIVACY_POOL_DEPTH_BITS
- PRIVACY_POOL_VALUE_BITS
- PRIVACY_POOL_HASH
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from hash_utils import FIELD_MODULUS, Compressor, compressor_names, get_compressor
from relation_errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 32
DEFAULT_DEPTH_BITS = 6
DEFAULT_VALUE_BITS = 128
DEFAULT_HASH = "poseidon"

# A range window must leave the upper half of the field unreachable,
# otherwise a wrapped (negative) remainder could land inside it.
MAX_VALUE_BITS = FIELD_MODULUS.bit_length() - 3


@dataclass(frozen=True)
class RelationConfig:
    max_depth: int = DEFAULT_MAX_DEPTH
    depth_bits: int = DEFAULT_DEPTH_BITS
    value_bits: int = DEFAULT_VALUE_BITS
    hash_name: str = DEFAULT_HASH

    def validate(self) -> "RelationConfig":
        """
        Check the parameters are mutually consistent.

        The depth comparator works on depth_bits-wide numbers, so
        max_depth itself must be representable in that width.

        Returns:
            self, to allow chaining

        Raises:
            ConfigError: inconsistent parameters
        """
        if self.max_depth < 0:
            raise ConfigError(f"max_depth must be non-negative, got {self.max_depth}")
        if self.depth_bits < 1:
            raise ConfigError(f"depth_bits must be positive, got {self.depth_bits}")
        if self.max_depth >= 2 ** self.depth_bits:
            raise ConfigError(
                f"max_depth {self.max_depth} does not fit a {self.depth_bits}-bit "
                f"depth comparator (limit {2 ** self.depth_bits - 1})"
            )
        if not 1 <= self.value_bits <= MAX_VALUE_BITS:
            raise ConfigError(
                f"value_bits must be in 1..{MAX_VALUE_BITS}, got {self.value_bits}"
            )
        if self.hash_name not in compressor_names():
            raise ConfigError(
                f"Unknown compressor {self.hash_name!r}; expected one of {compressor_names()}"
            )
        return self

    def compressor(self) -> Compressor:
        return get_compressor(self.hash_name)

    def with_overrides(self, **changes) -> "RelationConfig":
        """Copy with some fields replaced (None values are ignored)."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes).validate()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RelationConfig":
        """
        Build a config from PRIVACY_POOL_* environment variables.

        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        config = cls(
            max_depth=_int_var(env, "PRIVACY_POOL_MAX_DEPTH", DEFAULT_MAX_DEPTH),
            depth_bits=_int_var(env, "PRIVACY_POOL_DEPTH_BITS", DEFAULT_DEPTH_BITS),
            value_bits=_int_var(env, "PRIVACY_POOL_VALUE_BITS", DEFAULT_VALUE_BITS),
            hash_name=env.get("PRIVACY_POOL_HASH", DEFAULT_HASH),
        ).validate()
        logger.debug("Loaded %s from environment", config)
        return config


def _int_var(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None
