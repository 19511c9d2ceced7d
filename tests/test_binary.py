import sys

import pytest

from conftest import read_log
from e2e_harness.binary import BinaryProvisioner
from e2e_harness.errors import BuildFailure


def _python(code: str):
    return [sys.executable, "-c", code]


def test_existing_binary_skips_build(tmp_path):
    binary = tmp_path / "target" / "release" / "spawn_test_server"
    binary.parent.mkdir(parents=True)
    binary.touch()
    provisioner = BinaryProvisioner("target/release/spawn_test_server", ["tool-that-must-not-run-xyz"])

    assert provisioner.ensure_binary(tmp_path) == binary


def test_build_produces_binary(tmp_path, sink):
    binary = tmp_path / "spawn_test_server"
    provisioner = BinaryProvisioner(
        binary,
        _python(f"print('Finished release'); open({str(binary)!r}, 'w').close()"),
        log_sink=sink,
    )

    assert provisioner.ensure_binary(tmp_path) == binary
    assert binary.exists()
    log = read_log(sink)
    assert "Binary not found" in log
    assert "Binary build successful" in log


def test_failed_build_carries_exit_code_and_output(tmp_path):
    provisioner = BinaryProvisioner(
        "spawn_test_server",
        _python("import sys; print('error[E0432]: unresolved import'); sys.exit(101)"),
    )

    with pytest.raises(BuildFailure) as excinfo:
        provisioner.ensure_binary(tmp_path)

    assert excinfo.value.exit_code == 101
    assert "unresolved import" in excinfo.value.output
    assert "exit code 101" in str(excinfo.value)


def test_build_output_includes_stderr(tmp_path):
    provisioner = BinaryProvisioner(
        "spawn_test_server",
        _python("import sys; print('warning: unused', file=sys.stderr); sys.exit(1)"),
    )

    with pytest.raises(BuildFailure) as excinfo:
        provisioner.ensure_binary(tmp_path)

    assert "warning: unused" in excinfo.value.output


def test_missing_build_tool(tmp_path):
    provisioner = BinaryProvisioner("spawn_test_server", ["definitely-not-cargo-xyz", "build"])

    with pytest.raises(BuildFailure) as excinfo:
        provisioner.ensure_binary(tmp_path)

    assert excinfo.value.exit_code == 127


def test_successful_build_without_artifact_fails(tmp_path):
    provisioner = BinaryProvisioner("spawn_test_server", _python("print('nothing built')"))

    with pytest.raises(BuildFailure) as excinfo:
        provisioner.ensure_binary(tmp_path)

    assert excinfo.value.exit_code == 0
    assert "was not produced" in excinfo.value.output
