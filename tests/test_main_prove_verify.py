"""
Proving driver end to end: withdrawal file on disk, dry run, @snark session.

The polynomial ToyCompressor is patched in through RelationConfig so the
session runs without a Poseidon gadget.
"""

import dataclasses

import pytest

pytest.importorskip("pysnark.runtime")

import main_prove_verify  # noqa: E402
from coinutils import withdrawal_to_json, write_json  # noqa: E402
from commitment_scheme import CommitmentRecord  # noqa: E402
from lean_imt import LeanIMT  # noqa: E402
from pool_config import RelationConfig  # noqa: E402
from reference_relation import WithdrawInputs, evaluate_withdraw  # noqa: E402
from relation_errors import RelationError  # noqa: E402


@pytest.fixture
def toy_config(toy, config, monkeypatch):
    monkeypatch.setattr(RelationConfig, "compressor", lambda self: toy)
    return config


def _write_withdrawal(tmp_path, toy, config, **overrides):
    record = CommitmentRecord(value=100, label=5, nullifier=11, secret=13)
    commitment, _ = record.derive(toy)
    proof = LeanIMT(toy, [1, commitment, 3]).proof(1, max_depth=config.max_depth)
    fields = dict(
        withdrawn_value=60,
        state_root=proof.root,
        declared_depth=proof.depth,
        label=record.label,
        existing_value=record.value,
        existing_nullifier=record.nullifier,
        existing_secret=record.secret,
        siblings=proof.siblings,
        state_index=1,
    )
    fields.update(overrides)
    inputs = WithdrawInputs(**fields)
    path = tmp_path / "withdrawal.json"
    write_json(str(path), withdrawal_to_json(inputs))
    return str(path), inputs


class TestProveWithdrawal:
    def test_session_outputs(self, tmp_path, toy, toy_config):
        path, inputs = _write_withdrawal(tmp_path, toy, toy_config)
        outputs = main_prove_verify.prove_withdrawal(path, toy_config)
        assert outputs == evaluate_withdraw(inputs, toy_config, toy)
        assert outputs.remaining_value == 40
        assert outputs.root == inputs.state_root

    def test_split_session(self, tmp_path, toy, toy_config):
        path, _ = _write_withdrawal(tmp_path, toy, toy_config, new_nullifier=17, new_secret=19)
        outputs = main_prove_verify.prove_withdrawal(path, toy_config)
        remainder, _ = CommitmentRecord(value=40, label=5, nullifier=17, secret=19).derive(toy)
        assert outputs.new_commitment_hash == remainder

    def test_evaluators_disagree(self, tmp_path, toy, toy_config, monkeypatch):
        """A circuit that drifts from the reference evaluator is reported."""
        path, _ = _write_withdrawal(tmp_path, toy, toy_config)
        real = main_prove_verify.evaluate_withdraw

        def skewed(inputs, config, compressor):
            outputs = real(inputs, config, compressor)
            return dataclasses.replace(outputs, remaining_value=outputs.remaining_value + 1)

        monkeypatch.setattr(main_prove_verify, "evaluate_withdraw", skewed)
        with pytest.raises(RelationError):
            main_prove_verify.prove_withdrawal(path, toy_config)

    def test_unsatisfiable_file_fails_before_session(self, tmp_path, toy, toy_config):
        path, _ = _write_withdrawal(tmp_path, toy, toy_config, withdrawn_value=150)
        with pytest.raises(RelationError):
            main_prove_verify.prove_withdrawal(path, toy_config)


class TestCli:
    @pytest.fixture(autouse=True)
    def env(self, toy_config, monkeypatch):
        monkeypatch.setenv("PRIVACY_POOL_MAX_DEPTH", str(toy_config.max_depth))
        monkeypatch.setenv("PRIVACY_POOL_HASH", "sha256")

    def test_prints_public_outputs(self, tmp_path, toy, toy_config, capsys):
        path, inputs = _write_withdrawal(tmp_path, toy, toy_config, new_nullifier=17, new_secret=19)
        assert main_prove_verify.main([path]) == 0
        out = capsys.readouterr().out
        assert f"nullifierHash: {toy.hash1(11)}" in out
        assert f"stateRoot: {inputs.state_root}" in out
        assert "newCommitmentHash: " in out

    def test_stale_root_exit_code(self, tmp_path, toy, toy_config):
        path, _ = _write_withdrawal(tmp_path, toy, toy_config, state_root=999)
        assert main_prove_verify.main([path]) == 1

    def test_missing_file_exit_code(self, tmp_path):
        assert main_prove_verify.main([str(tmp_path / "absent.json")]) == 1
