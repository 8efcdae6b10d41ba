from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from tfaction.artifacts import (
    ArtifactNotFoundError,
    ArtifactReadError,
    ArtifactWriteError,
    PlanArtifactStore,
)
from tfaction.command import Command
from tfaction.github.model import PullRequestStatus
from tfaction.metric import (
    execution_counter,
    execution_seconds,
    requirement_skip_counter,
)
from tfaction.model import Project
from tfaction.requirements import (
    ForkBlockedError,
    RequirementsNotMetError,
    check_requirements,
)
from tfaction.terraform import ExecutionError, ExecutionResult, TerraformExecutor

logger = logging.getLogger("tfaction")


class ProjectStatus(Enum):
    planned = 1
    applied = 2
    skipped = 3
    failed = 4
    not_run = 5


@dataclass
class ProjectReport:
    project: Project
    status: ProjectStatus
    result: Optional[ExecutionResult] = None
    reasons: List[str] = field(default_factory=list)
    error: Optional[str] = None
    stdout: str = ""
    stderr: str = ""
    warnings: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.project.name


@dataclass
class RunReport:
    command: Command
    projects: List[ProjectReport] = field(default_factory=list)
    args: Sequence[str] = ()
    error_kind: Optional[str] = None
    error: Optional[str] = None
    autoplan: bool = False

    @property
    def is_fatal(self) -> bool:
        return self.error_kind is not None

    @property
    def skipped(self) -> List[ProjectReport]:
        return [p for p in self.projects if p.status == ProjectStatus.skipped]

    @property
    def has_changes(self) -> bool:
        return any(p.result is not None and p.result.has_changes for p in self.projects)

    def fail(self, kind: str, message: str) -> "RunReport":
        self.error_kind = kind
        self.error = message
        return self


def _load_reviewed_plan(
    artifacts: PlanArtifactStore,
    project: Project,
    destination: Path,
    report: ProjectReport,
) -> Optional[Path]:
    try:
        return artifacts.load(project.name, destination)
    except (ArtifactNotFoundError, ArtifactReadError) as e:
        logger.warning(
            "No usable plan artifact for %s, falling back to an unreviewed apply: %s",
            project.name,
            e,
        )
        report.warnings.append(f"{e}; applied without a reviewed plan")
        return None


def run_projects(
    command: Command,
    projects: Sequence[Project],
    status: PullRequestStatus,
    *,
    executor: TerraformExecutor,
    artifacts: PlanArtifactStore,
    args: Sequence[str] = (),
) -> RunReport:
    """
    Run ``command`` for every project in order, gating each on its
    requirements against the same pull request snapshot.

    Unmet requirements skip a project and the run continues. A terraform
    failure, or a plan that cannot be stored, ends the run and the remaining
    projects are reported as not run.
    """
    run = RunReport(command=command, args=tuple(args))

    for project in projects:
        logger.info("=" * 60)
        logger.info("Project: %s (%s)", project.name, project.dir)
        logger.info("=" * 60)

        try:
            check_requirements(command, project, status)
        except (ForkBlockedError, RequirementsNotMetError) as e:
            logger.warning("Project %s: %s", project.name, e)
            if isinstance(e, ForkBlockedError):
                reason, reasons = "fork", [str(e)]
            else:
                reason, reasons = "requirements", e.reasons
            requirement_skip_counter.labels(command=command.value, reason=reason).inc()
            run.projects.append(
                ProjectReport(
                    project=project, status=ProjectStatus.skipped, reasons=reasons
                )
            )
            continue

        report = ProjectReport(project=project, status=ProjectStatus.not_run)
        plan_path = None
        if command == Command.apply:
            plan_path = _load_reviewed_plan(
                artifacts, project, executor.working_dir(project), report
            )

        try:
            result = executor.run(command, project, args, plan_path=plan_path)
        except ExecutionError as e:
            logger.error("Project %s: %s", project.name, e)
            execution_counter.labels(command=command.value, result="failure").inc()
            report.status = ProjectStatus.failed
            report.error = str(e)
            report.stdout = e.stdout
            report.stderr = e.stderr
            run.projects.append(report)
            run.fail("ExecutionError", str(e))
            break

        execution_counter.labels(command=command.value, result="success").inc()
        execution_seconds.labels(command=command.value).observe(
            result.duration.total_seconds()
        )
        report.result = result
        report.stdout = result.stdout
        report.stderr = result.stderr

        if command == Command.plan:
            report.status = ProjectStatus.planned
            logger.info(
                "%s detected in plan for %s",
                "Changes" if result.has_changes else "No changes",
                project.name,
            )
            try:
                artifacts.save(project.name, result.plan_path)
            except ArtifactWriteError as e:
                logger.error("Project %s: %s", project.name, e)
                report.status = ProjectStatus.failed
                report.error = str(e)
                run.projects.append(report)
                run.fail("ArtifactWriteError", str(e))
                break
        else:
            report.status = ProjectStatus.applied
            logger.info("Apply completed successfully for %s", project.name)
            if result.reviewed:
                artifacts.discard(project.name)

        run.projects.append(report)

    if run.is_fatal:
        for project in projects[len(run.projects) :]:
            run.projects.append(
                ProjectReport(project=project, status=ProjectStatus.not_run)
            )

    return run
