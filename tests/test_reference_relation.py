import logging
import random

import pytest

from commitment_scheme import CommitmentRecord
from hash_utils import FIELD_MODULUS
from lean_imt import LeanIMT
from pool_config import RelationConfig
from reference_relation import (
    WithdrawInputs,
    check_depth_bound,
    compute_root,
    decode_index,
    evaluate_withdraw,
    reduce_level,
    select_pair,
    structural_depth,
    verify_inclusion,
)
from relation_errors import (
    DepthBoundError,
    IndexRangeError,
    NullifierReuseError,
    RangeCheckError,
    RelationUnsatisfied,
    RootMismatchError,
    WitnessFormatError,
)


class TestIndexDecoder:
    def test_little_endian(self):
        assert decode_index(5, 4) == [1, 0, 1, 0]

    def test_reconstructs_index(self):
        bits = decode_index(11, 6)
        assert sum(b << i for i, b in enumerate(bits)) == 11

    def test_max_index(self):
        assert decode_index(15, 4) == [1, 1, 1, 1]

    def test_out_of_range(self):
        with pytest.raises(IndexRangeError):
            decode_index(16, 4)

    def test_negative_index_wraps_out_of_range(self):
        with pytest.raises(IndexRangeError):
            decode_index(-1, 4)

    def test_zero_depth(self):
        assert decode_index(0, 0) == []
        with pytest.raises(IndexRangeError):
            decode_index(1, 0)


class TestPathSelectorAndReducer:
    def test_select(self):
        assert select_pair(0, 10, 20) == (10, 20)
        assert select_pair(1, 10, 20) == (20, 10)

    def test_reduce_hashes_with_sibling(self, sha):
        assert reduce_level(10, 10, 20, 20, sha) == sha.hash2(10, 20)

    def test_reduce_propagates_on_zero_sentinel(self, sha):
        assert reduce_level(10, 10, 0, 0, sha) == 10


class TestDepthBound:
    def test_within_bound(self):
        check_depth_bound(0, 4, 6)
        check_depth_bound(4, 4, 6)

    def test_above_max(self):
        with pytest.raises(DepthBoundError):
            check_depth_bound(5, 4, 6)

    def test_outside_comparator(self):
        with pytest.raises(DepthBoundError):
            check_depth_bound(64, 63, 6)

    def test_negative_wraps(self):
        with pytest.raises(DepthBoundError):
            check_depth_bound(-1, 4, 6)


class TestMerkleInclusion:
    def test_round_trip_every_leaf(self, sha, config):
        """Every leaf of every tree size up to 2**max_depth folds to the true root."""
        rng = random.Random(1234)
        for size in range(1, 17):
            leaves = [rng.getrandbits(128) for _ in range(size)]
            tree = LeanIMT(sha, leaves)
            for index in range(size):
                proof = tree.proof(index, config.max_depth)
                root = compute_root(
                    proof.leaf, index, proof.siblings, proof.depth, config, sha
                )
                assert root == tree.root, (size, index)

    def test_two_leaf_scenario(self, sha):
        config = RelationConfig(max_depth=1, hash_name="sha256").validate()
        expected = sha.hash2(1, 2)
        assert compute_root(1, 0, [2], 1, config, sha) == expected
        assert compute_root(2, 1, [1], 1, config, sha) == expected

    def test_depth_zero_identity(self, sha, config):
        assert compute_root(100, 0, [0, 0, 0, 0], 0, config, sha) == 100

    def test_max_depth_zero(self, sha):
        config = RelationConfig(max_depth=0, hash_name="sha256").validate()
        assert compute_root(100, 0, [], 0, config, sha) == 100

    def test_sentinel_sensitivity(self, sha, config):
        """Non-zero sibling beyond the true depth is folded in, not ignored."""
        root = compute_root(100, 0, [0, 7, 0, 0], 0, config, sha)
        assert root != 100
        assert root == sha.hash2(100, 7)

    def test_declared_depth_does_not_gate(self, sha, config):
        tree = LeanIMT(sha, [1, 2, 3, 4])
        proof = tree.proof(1, config.max_depth)
        for declared in range(config.max_depth + 1):
            assert compute_root(2, 1, proof.siblings, declared, config, sha) == tree.root

    def test_low_declared_depth_is_logged(self, sha, config, caplog):
        with caplog.at_level(logging.WARNING, logger="reference_relation"):
            compute_root(100, 0, [0, 7, 0, 0], 0, config, sha)
        assert "Declared depth" in caplog.text

    def test_corruption_changes_root(self, sha):
        config = RelationConfig(max_depth=2, hash_name="sha256").validate()
        siblings = [1, sha.hash2(3, 4)]
        root = compute_root(2, 1, siblings, 2, config, sha)
        assert root == sha.hash2(sha.hash2(1, 2), sha.hash2(3, 4))

        for corrupted in ([999, siblings[1]], [siblings[0], 888]):
            other = compute_root(2, 1, corrupted, 2, config, sha)
            assert other != root
            with pytest.raises(RootMismatchError):
                verify_inclusion(2, 1, corrupted, 2, root, config, sha)

    def test_wrong_index_changes_root(self, sha):
        config = RelationConfig(max_depth=2, hash_name="sha256").validate()
        siblings = [1, sha.hash2(3, 4)]
        assert compute_root(2, 0, siblings, 2, config, sha) != compute_root(2, 1, siblings, 2, config, sha)

    @pytest.mark.parametrize("leaf,index,siblings", [
        (1, 0, [0, 0, 0, 0]),
        (2, 1, [1, 5, 0, 0]),
        (7, 15, [1, 2, 3, 4]),
    ])
    def test_depth_bound_always_fails(self, sha, config, leaf, index, siblings):
        with pytest.raises(DepthBoundError):
            compute_root(leaf, index, siblings, config.max_depth + 1, config, sha)

    def test_index_out_of_range(self, sha, config):
        with pytest.raises(IndexRangeError):
            compute_root(1, 16, [0, 0, 0, 0], 0, config, sha)

    def test_sibling_count(self, sha, config):
        with pytest.raises(WitnessFormatError):
            compute_root(1, 0, [0, 0], 0, config, sha)

    def test_structural_depth(self):
        assert structural_depth([0, 0, 0]) == 0
        assert structural_depth([5, 0, 0]) == 1
        assert structural_depth([0, 7, 0]) == 2


def _withdrawal(sha, config, value=100, withdrawn=60, **overrides):
    record = CommitmentRecord(value=value, label=5, nullifier=11, secret=13)
    commitment, _ = record.derive(sha)
    tree = LeanIMT(sha, [sha.hash1(1), commitment, sha.hash1(3)])
    proof = tree.proof(1, config.max_depth)
    fields = dict(
        withdrawn_value=withdrawn,
        state_root=tree.root,
        declared_depth=proof.depth,
        label=record.label,
        existing_value=record.value,
        existing_nullifier=record.nullifier,
        existing_secret=record.secret,
        siblings=proof.siblings,
        state_index=1,
    )
    fields.update(overrides)
    return WithdrawInputs(**fields)


class TestWithdrawRelation:
    def test_partial_withdrawal(self, sha, config):
        outputs = evaluate_withdraw(_withdrawal(sha, config), config, sha)
        assert outputs.remaining_value == 40
        assert outputs.nullifier_hash == sha.hash1(11)
        assert outputs.new_commitment_hash is None

    def test_full_withdrawal(self, sha, config):
        outputs = evaluate_withdraw(_withdrawal(sha, config, withdrawn=100), config, sha)
        assert outputs.remaining_value == 0

    def test_overdraw_fails_range_check(self, sha, config):
        """100 - 150 wraps to p - 50 in the field; the range check catches it."""
        with pytest.raises(RangeCheckError) as excinfo:
            evaluate_withdraw(_withdrawal(sha, config, withdrawn=150), config, sha)
        assert excinfo.value.name == "remainingValue"

    def test_withdrawn_value_out_of_range(self, sha, config):
        with pytest.raises(RangeCheckError) as excinfo:
            evaluate_withdraw(
                _withdrawal(sha, config, withdrawn=FIELD_MODULUS - 10), config, sha
            )
        assert excinfo.value.name == "withdrawnValue"

    def test_split_withdrawal(self, sha, config):
        inputs = _withdrawal(sha, config, new_nullifier=17, new_secret=19)
        outputs = evaluate_withdraw(inputs, config, sha)
        expected, _ = CommitmentRecord(40, 5, 17, 19).derive(sha)
        assert outputs.new_commitment_hash == expected

    def test_split_reusing_nullifier_fails(self, sha, config):
        with pytest.raises(NullifierReuseError):
            evaluate_withdraw(
                _withdrawal(sha, config, new_nullifier=11, new_secret=19), config, sha
            )

    def test_split_needs_both_fields(self, sha, config):
        with pytest.raises(WitnessFormatError):
            evaluate_withdraw(_withdrawal(sha, config, new_nullifier=17), config, sha)

    def test_stale_root(self, sha, config):
        with pytest.raises(RootMismatchError) as excinfo:
            evaluate_withdraw(_withdrawal(sha, config, state_root=12345), config, sha)
        assert excinfo.value.expected == 12345

    def test_wrong_secret_fails_only_membership(self, sha, config):
        with pytest.raises(RootMismatchError):
            evaluate_withdraw(_withdrawal(sha, config, existing_secret=14), config, sha)

    def test_all_violations_are_unsatisfied(self, sha, config):
        with pytest.raises(RelationUnsatisfied):
            evaluate_withdraw(
                _withdrawal(sha, config, declared_depth=config.max_depth + 1), config, sha
            )
