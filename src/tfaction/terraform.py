from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import timedelta
import logging
from pathlib import Path
import subprocess
import time
from typing import List, Mapping, Optional, Protocol, Sequence

from tfaction.command import Command
from tfaction.model import Project

logger = logging.getLogger("tfaction")

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CHANGES = 2
EXIT_TIMEOUT = 124
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127

PLAN_FILE_PREFIX = "tfplan"


@dataclass(frozen=True)
class ProcessOutput:
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class CommandRunner(Protocol):
    def __call__(
        self, args: Sequence[str], *, cwd: Path, timeout: Optional[float] = None
    ) -> ProcessOutput:
        ...


def _to_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return str(value)


def run_subprocess(
    args: Sequence[str],
    *,
    cwd: Path,
    timeout: Optional[float] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ProcessOutput:
    logger.debug("Running %s in %s", " ".join(args), cwd)
    try:
        proc = subprocess.run(
            list(args),
            cwd=str(cwd),
            env=dict(env) if env is not None else None,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        stderr = _to_text(exc.stderr)
        stderr = f"{stderr}\ncommand timed out after {timeout:g}s".strip()
        return ProcessOutput(
            exit_code=EXIT_TIMEOUT, stdout=_to_text(exc.stdout), stderr=stderr
        )
    except FileNotFoundError as exc:
        return ProcessOutput(exit_code=EXIT_NOT_FOUND, stderr=str(exc))
    except OSError as exc:
        # not executable, or cwd is not a directory
        return ProcessOutput(exit_code=EXIT_NOT_EXECUTABLE, stderr=str(exc))

    return ProcessOutput(
        exit_code=int(proc.returncode),
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )


@dataclass(frozen=True)
class ExecutionResult:
    command: Command
    project: str
    exit_code: int
    has_changes: bool
    stdout: str
    stderr: str
    plan_path: Optional[Path] = None
    reviewed: bool = False
    duration: timedelta = field(default_factory=timedelta)


class ExecutionError(Exception):
    def __init__(
        self,
        message: str,
        *,
        project: str,
        step: str,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
    ):
        self.project = project
        self.step = step
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(message)


class TerraformExecutor:
    """
    Runs terraform for a single project at a time. Every invocation is a
    blocking subprocess call with its output fully captured.

    ``plan`` is run with ``-detailed-exitcode`` so that terraform reports
    pending changes as exit code 2.
    """

    def __init__(
        self,
        workspace: Path | str = ".",
        *,
        binary: str = "terraform",
        timeout: Optional[float] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self.workspace = Path(workspace)
        self.binary = binary
        self.timeout = timeout
        self.runner = runner or run_subprocess

    def working_dir(self, project: Project) -> Path:
        return (self.workspace / project.dir).resolve()

    def plan_file_name(self, project: Project) -> str:
        return f"{PLAN_FILE_PREFIX}-{project.name}"

    def plan_file_path(self, project: Project) -> Path:
        return self.working_dir(project) / self.plan_file_name(project)

    def _run(self, project: Project, args: List[str]) -> ProcessOutput:
        return self.runner(
            [self.binary, *args], cwd=self.working_dir(project), timeout=self.timeout
        )

    def version(self) -> str:
        output = self.runner(
            [self.binary, "version"], cwd=self.workspace, timeout=self.timeout
        )
        if output.exit_code != EXIT_SUCCESS:
            raise ExecutionError(
                f"{self.binary} is not installed or not available in PATH",
                project="",
                step="version",
                exit_code=output.exit_code,
                stdout=output.stdout,
                stderr=output.stderr,
            )
        return output.stdout.strip().splitlines()[0] if output.stdout.strip() else ""

    def init(self, project: Project) -> ProcessOutput:
        logger.info("Initializing %s in %s", project.name, self.working_dir(project))
        output = self._run(project, ["init", "-input=false", "-no-color"])
        if output.exit_code != EXIT_SUCCESS:
            raise ExecutionError(
                f"terraform init failed for {project.name} with exit code "
                f"{output.exit_code}:\n{output.stderr}",
                project=project.name,
                step="init",
                exit_code=output.exit_code,
                stdout=output.stdout,
                stderr=output.stderr,
            )
        return output

    def plan(self, project: Project, args: Sequence[str] = ()) -> ExecutionResult:
        plan_path = self.plan_file_path(project)
        logger.info("Plan for %s will be saved to %s", project.name, plan_path)
        output = self._run(
            project,
            [
                "plan",
                "-input=false",
                "-no-color",
                "-detailed-exitcode",
                f"-out={plan_path}",
                *args,
            ],
        )

        if output.exit_code not in (EXIT_SUCCESS, EXIT_CHANGES):
            raise ExecutionError(
                f"terraform plan failed for {project.name} with exit code "
                f"{output.exit_code}:\n{output.stderr}",
                project=project.name,
                step="plan",
                exit_code=output.exit_code,
                stdout=output.stdout,
                stderr=output.stderr,
            )

        return ExecutionResult(
            command=Command.plan,
            project=project.name,
            exit_code=output.exit_code,
            has_changes=output.exit_code == EXIT_CHANGES,
            stdout=output.stdout,
            stderr=output.stderr,
            plan_path=plan_path,
        )

    def apply(
        self,
        project: Project,
        args: Sequence[str] = (),
        plan_path: Optional[Path] = None,
    ) -> ExecutionResult:
        apply_args = ["apply", "-input=false", "-no-color"]
        if plan_path is not None:
            logger.info("Applying saved plan %s for %s", plan_path, project.name)
            # terraform stops reading options at the plan file
            apply_args += [*args, str(plan_path)]
        else:
            logger.warning(
                "No saved plan for %s, applying without a reviewed plan", project.name
            )
            apply_args += ["-auto-approve", *args]

        output = self._run(project, apply_args)
        if output.exit_code != EXIT_SUCCESS:
            raise ExecutionError(
                f"terraform apply failed for {project.name} with exit code "
                f"{output.exit_code}:\n{output.stderr}",
                project=project.name,
                step="apply",
                exit_code=output.exit_code,
                stdout=output.stdout,
                stderr=output.stderr,
            )

        return ExecutionResult(
            command=Command.apply,
            project=project.name,
            exit_code=output.exit_code,
            has_changes=False,
            stdout=output.stdout,
            stderr=output.stderr,
            plan_path=plan_path,
            reviewed=plan_path is not None,
        )

    def run(
        self,
        command: Command,
        project: Project,
        args: Sequence[str] = (),
        plan_path: Optional[Path] = None,
    ) -> ExecutionResult:
        started = time.monotonic()
        args_str = f" {' '.join(args)}" if args else ""
        logger.info("Executing terraform %s%s for %s", command.value, args_str, project)

        self.init(project)
        if command == Command.plan:
            result = self.plan(project, args)
        else:
            result = self.apply(project, args, plan_path=plan_path)

        duration = timedelta(seconds=time.monotonic() - started)
        logger.info(
            "terraform %s for %s completed with exit code %d",
            command.value,
            project.name,
            result.exit_code,
        )
        return replace(result, duration=duration)
