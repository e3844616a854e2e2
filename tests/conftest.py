import pytest

from hash_utils import Compressor, Sha256Compressor, field
from pool_config import RelationConfig


class ToyCompressor(Compressor):
    """
    Small polynomial compressor built from + and * only.

    Runs unchanged on integers and on PySNARK values, so the reference
    evaluator and the circuit can be compared without a Poseidon gadget.
    Outputs stay small for small inputs.
    """

    name = "toy"
    in_circuit = True

    def compress(self, values):
        acc = 0
        for i, v in enumerate(values):
            acc = acc + (i + 2) * (v * v) + (i + 1) * v
        acc = acc + 7 * len(values)
        if isinstance(acc, int):
            return field(acc)
        return acc


@pytest.fixture
def sha():
    return Sha256Compressor()


@pytest.fixture
def toy():
    return ToyCompressor()


@pytest.fixture
def config():
    """Four levels, like the pool's test circuit."""
    return RelationConfig(max_depth=4, depth_bits=6, value_bits=128, hash_name="sha256").validate()
