"""
Exception hierarchy for the withdrawal relation.

Three failure classes exist:
- Configuration / format problems (ConfigError, WitnessFormatError):
  the inputs cannot even be evaluated.
- Structural violations (RelationUnsatisfied and subclasses):
  no witness satisfies the relation, so no proof can be produced.
- Semantic divergence is NOT an exception: a wrong index, sibling path or
  declared depth silently folds to a different root. Only the final
  comparison against the public state root fails (RootMismatchError).
"""


class RelationError(Exception):
    """Base exception for all relation errors."""
    pass


class ConfigError(RelationError):
    """
    Raised when a RelationConfig is invalid.

    This indicates:
    - max_depth does not fit the depth comparator's bit width
    - value_bits leaves no headroom below the field modulus
    - unknown compressor name
    """
    pass


class WitnessFormatError(RelationError):
    """
    Raised when inputs are malformed.

    This indicates:
    - sibling path length differs from max_depth
    - half of a split-withdrawal pair is missing
    - a JSON input document is missing keys or holds non-integers
    """
    pass


class CoinNotFoundError(RelationError):
    """Raised when a coin's commitment is not a leaf of the given state."""
    pass


class RelationUnsatisfied(RelationError):
    """
    Raised when the witness cannot satisfy the relation.

    Both evaluators raise the same subclass for the same violation,
    so callers can treat the off-circuit check as a dry run of proving.
    """
    pass


class DepthBoundError(RelationUnsatisfied):
    """Declared depth exceeds max_depth or the comparator width."""
    pass


class IndexRangeError(RelationUnsatisfied):
    """Leaf index does not fit in max_depth bits."""
    pass


class RangeCheckError(RelationUnsatisfied):
    """
    A value falls outside [0, 2**bits).

    For the remaining balance this is how an overdraw shows up: field
    subtraction wraps to a huge element instead of going negative.
    """

    def __init__(self, message: str, name: str, bits: int):
        super().__init__(message)
        self.name = name
        self.bits = bits


class NullifierReuseError(RelationUnsatisfied):
    """Split withdrawal reuses the existing nullifier for the remainder."""
    pass


class RootMismatchError(RelationUnsatisfied):
    """
    The recomputed root differs from the public state root.

    Carries both values so callers can tell a stale root from a bad path.
    """

    def __init__(self, message: str, computed: int, expected: int):
        super().__init__(message)
        self.computed = computed
        self.expected = expected
