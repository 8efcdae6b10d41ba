import sys

import pytest

from tfaction.command import Command
from tfaction.model import Project
from tfaction.terraform import (
    EXIT_NOT_EXECUTABLE,
    EXIT_NOT_FOUND,
    EXIT_TIMEOUT,
    ExecutionError,
    ProcessOutput,
    TerraformExecutor,
    run_subprocess,
)


class _FakeRunner:
    def __init__(self, **exit_codes):
        self.exit_codes = exit_codes
        self.calls = []

    def __call__(self, args, *, cwd, timeout=None):
        self.calls.append((list(args), cwd, timeout))
        step = args[1]
        return ProcessOutput(
            exit_code=self.exit_codes.get(step, 0),
            stdout=f"{step} output",
            stderr=f"{step} error" if self.exit_codes.get(step, 0) else "",
        )


@pytest.fixture
def project():
    return Project(name="network", dir="infra/network")


def make_executor(tmp_path, runner, **kwargs):
    return TerraformExecutor(tmp_path, runner=runner, **kwargs)


def test_plan_invocation(tmp_path, project):
    runner = _FakeRunner()
    executor = make_executor(tmp_path, runner, timeout=30)

    result = executor.run(Command.plan, project, ["-var=a=b"])

    workdir = (tmp_path / "infra/network").resolve()
    plan_path = workdir / "tfplan-network"
    assert runner.calls == [
        (["terraform", "init", "-input=false", "-no-color"], workdir, 30),
        (
            [
                "terraform",
                "plan",
                "-input=false",
                "-no-color",
                "-detailed-exitcode",
                f"-out={plan_path}",
                "-var=a=b",
            ],
            workdir,
            30,
        ),
    ]
    assert result.command == Command.plan
    assert result.project == "network"
    assert result.exit_code == 0
    assert not result.has_changes
    assert result.plan_path == plan_path
    assert result.stdout == "plan output"
    assert result.duration.total_seconds() >= 0


def test_plan_with_changes(tmp_path, project):
    executor = make_executor(tmp_path, _FakeRunner(plan=2))
    result = executor.run(Command.plan, project)
    assert result.exit_code == 2
    assert result.has_changes


def test_plan_failure(tmp_path, project):
    executor = make_executor(tmp_path, _FakeRunner(plan=1))
    with pytest.raises(ExecutionError) as excinfo:
        executor.run(Command.plan, project)
    e = excinfo.value
    assert e.step == "plan"
    assert e.exit_code == 1
    assert e.project == "network"
    assert e.stderr == "plan error"
    assert "plan error" in str(e)


def test_init_failure_stops_run(tmp_path, project):
    runner = _FakeRunner(init=1)
    executor = make_executor(tmp_path, runner)
    with pytest.raises(ExecutionError) as excinfo:
        executor.run(Command.apply, project)
    assert excinfo.value.step == "init"
    assert len(runner.calls) == 1


def test_apply_with_plan(tmp_path, project):
    runner = _FakeRunner()
    executor = make_executor(tmp_path, runner, binary="tofu")
    plan_path = tmp_path / "tfplan-network"

    result = executor.run(
        Command.apply, project, ["-parallelism=2"], plan_path=plan_path
    )

    args, _, _ = runner.calls[-1]
    assert args == [
        "tofu",
        "apply",
        "-input=false",
        "-no-color",
        "-parallelism=2",
        str(plan_path),
    ]
    assert result.reviewed
    assert not result.has_changes


def test_apply_without_plan(tmp_path, project):
    runner = _FakeRunner()
    executor = make_executor(tmp_path, runner)

    result = executor.run(Command.apply, project, ["-parallelism=2"])

    args, _, _ = runner.calls[-1]
    assert args == [
        "terraform",
        "apply",
        "-input=false",
        "-no-color",
        "-auto-approve",
        "-parallelism=2",
    ]
    assert not result.reviewed


def test_apply_failure(tmp_path, project):
    executor = make_executor(tmp_path, _FakeRunner(apply=1))
    with pytest.raises(ExecutionError) as excinfo:
        executor.run(Command.apply, project)
    assert excinfo.value.step == "apply"


def test_version(tmp_path):
    runner = _FakeRunner()
    assert make_executor(tmp_path, runner).version() == "version output"

    with pytest.raises(ExecutionError):
        make_executor(tmp_path, _FakeRunner(version=127)).version()


def test_run_subprocess(tmp_path):
    output = run_subprocess(
        [sys.executable, "-c", "import sys; print('out'); sys.exit(3)"], cwd=tmp_path
    )
    assert output.exit_code == 3
    assert output.stdout.strip() == "out"


def test_run_subprocess_missing_binary(tmp_path):
    output = run_subprocess(["definitely-not-a-terraform-binary"], cwd=tmp_path)
    assert output.exit_code == EXIT_NOT_FOUND


def test_run_subprocess_not_executable(tmp_path):
    binary = tmp_path / "terraform"
    binary.write_text("#!/bin/sh\necho never\n")
    binary.chmod(0o644)

    output = run_subprocess([str(binary), "version"], cwd=tmp_path)
    assert output.exit_code == EXIT_NOT_EXECUTABLE
    assert "Permission denied" in output.stderr


def test_run_subprocess_timeout(tmp_path):
    output = run_subprocess(
        [sys.executable, "-c", "import time; time.sleep(5)"],
        cwd=tmp_path,
        timeout=0.2,
    )
    assert output.exit_code == EXIT_TIMEOUT
    assert output.stderr.endswith("command timed out after 0.2s")


def test_missing_binary_is_execution_error(tmp_path, project):
    (tmp_path / "infra/network").mkdir(parents=True)
    executor = TerraformExecutor(tmp_path, binary="definitely-not-a-terraform-binary")
    with pytest.raises(ExecutionError) as excinfo:
        executor.run(Command.plan, project)
    assert excinfo.value.exit_code == EXIT_NOT_FOUND
    assert excinfo.value.step == "init"


def test_project_dir_not_a_directory(tmp_path, project):
    (tmp_path / "infra").mkdir()
    (tmp_path / "infra/network").write_text("not a directory")
    executor = TerraformExecutor(tmp_path, binary=sys.executable)
    with pytest.raises(ExecutionError) as excinfo:
        executor.run(Command.plan, project)
    assert excinfo.value.exit_code == EXIT_NOT_EXECUTABLE
    assert excinfo.value.step == "init"


def test_version_with_non_executable_binary(tmp_path):
    binary = tmp_path / "terraform"
    binary.write_text("#!/bin/sh\necho never\n")
    binary.chmod(0o644)

    executor = TerraformExecutor(tmp_path, binary=str(binary))
    with pytest.raises(ExecutionError) as excinfo:
        executor.version()
    assert excinfo.value.step == "version"
    assert excinfo.value.exit_code == EXIT_NOT_EXECUTABLE
