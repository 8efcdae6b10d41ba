from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

from tfaction.command import Command
from tfaction.github.model import PullRequestStatus
from tfaction.model import Project, Requirement

logger = logging.getLogger("tfaction")


DEFAULT_REQUIREMENTS: Dict[Command, Tuple[Requirement, ...]] = {
    Command.plan: (Requirement.mergeable,),
    Command.apply: (Requirement.mergeable, Requirement.approved),
}

REQUIREMENT_FAILURES: Dict[Requirement, str] = {
    Requirement.mergeable: "PR is not mergeable (conflicts or failing checks)",
    Requirement.approved: "PR is not approved",
    Requirement.undiverged: "PR branch has diverged from the base branch",
}


class RequirementsNotMetError(Exception):
    reasons: List[str]

    def __init__(self, reasons: Sequence[str]):
        self.reasons = list(reasons)
        super().__init__(
            "PR requirements not met:\n" + "\n".join(f"  - {r}" for r in self.reasons)
        )


class ForkBlockedError(Exception):
    def __init__(self, project: Project):
        self.project = project
        super().__init__(
            f"Refusing to apply {project.name}: pull requests from forks cannot "
            "run terraform apply"
        )


def requirements_for(command: Command, project: Project) -> List[Requirement]:
    if command == Command.plan:
        configured = project.plan_requirements
    else:
        configured = project.apply_requirements
    if configured is None:
        return list(DEFAULT_REQUIREMENTS[command])
    return list(dict.fromkeys(configured))


def is_satisfied(requirement: Requirement, status: PullRequestStatus) -> bool:
    if requirement == Requirement.mergeable:
        return status.mergeable
    if requirement == Requirement.approved:
        return status.approved
    if requirement == Requirement.undiverged:
        return not status.diverged
    raise ValueError(f"Unknown requirement {requirement}")


def check_requirements(
    command: Command, project: Project, status: PullRequestStatus
) -> None:
    if command == Command.apply and status.is_fork:
        raise ForkBlockedError(project)

    requirements = requirements_for(command, project)
    logger.debug(
        "Requirements for %s on %s: %s",
        command.value,
        project.name,
        ", ".join(r.value for r in requirements) or "none",
    )

    failures = [
        REQUIREMENT_FAILURES[r] for r in requirements if not is_satisfied(r, status)
    ]
    if len(failures) > 0:
        raise RequirementsNotMetError(failures)

    logger.debug("All requirements met for %s", project.name)
