from __future__ import annotations

from fnmatch import fnmatch
import logging
import re
from typing import Dict, List, Optional, Sequence

from tfaction.model import Project, normalize_path

logger = logging.getLogger("tfaction")


class ConfigLookupError(Exception):
    pass


class UnknownProjectError(ConfigLookupError):
    project: str
    available: List[str]

    def __init__(self, project: str, available: Sequence[str]):
        self.project = project
        self.available = list(available)
        super().__init__(
            f"Project '{project}' not found in configuration. "
            f"Available projects: {', '.join(self.available)}"
        )


def find_project(token: str, projects: Sequence[Project]) -> Optional[Project]:
    for project in projects:
        if project.name == token:
            return project
    directory = normalize_path(token)
    for project in projects:
        if project.dir == directory:
            return project
    return None


def branch_matches(project: Project, branch: str) -> bool:
    if project.branch is None:
        return True
    return re.search(project.branch, branch) is not None


def relative_to_project(project: Project, filename: str) -> Optional[str]:
    path = normalize_path(filename)
    if project.dir == ".":
        return path
    if path == project.dir:
        return ""
    prefix = project.dir.rstrip("/") + "/"
    if path.startswith(prefix):
        return path[len(prefix) :]
    return None


def _glob_matches(path: str, pattern: str) -> bool:
    if fnmatch(path, pattern):
        return True
    # fnmatch has no notion of "**/", let it also match files at the top level
    while pattern.startswith("**/"):
        pattern = pattern[3:]
        if fnmatch(path, pattern):
            return True
    return False


def project_apply_changed_files(project: Project, changed_files: Sequence[str]) -> bool:
    patterns = project.autoplan.when_modified
    for filename in changed_files:
        relative = relative_to_project(project, filename)
        if relative is None:
            continue
        if len(patterns) == 0:
            return True
        if any(_glob_matches(relative, p) for p in patterns):
            return True
    return False


def filter_projects(
    projects: Sequence[Project],
    changed_files: Optional[Sequence[str]] = None,
    branch: Optional[str] = None,
) -> List[Project]:
    selected: List[Project] = []
    for project in projects:
        logger.debug("Evaluate %s", project)
        if branch is not None and not branch_matches(project, branch):
            logger.debug(
                "- branch pattern '%s' does not match '%s'", project.branch, branch
            )
            continue

        if changed_files:
            if not project_apply_changed_files(project, changed_files):
                logger.debug("- no changed file under '%s'", project.dir)
                continue
            logger.debug("- changed files accept project")

        selected.append(project)
    return selected


def resolve_projects(
    requested: Sequence[str],
    projects: Sequence[Project],
    *,
    changed_files: Optional[Sequence[str]] = None,
    branch: Optional[str] = None,
) -> List[Project]:
    """
    Select the projects a command runs against.

    Explicitly requested projects are looked up by name, then by directory,
    and returned in the requested order. An explicit request is not subject
    to the branch or changed-file filters. Without a request every
    configured project is a candidate, in configuration order, and the
    filters apply when given.
    """
    if len(requested) == 0:
        return filter_projects(projects, changed_files=changed_files, branch=branch)

    resolved: Dict[str, Project] = {}
    for token in requested:
        project = find_project(token, projects)
        if project is None:
            raise UnknownProjectError(token, [p.name for p in projects])
        resolved.setdefault(project.name, project)

    logger.info("Target projects: %s", ", ".join(resolved))
    return list(resolved.values())


def determine_autoplan_projects(
    projects: Sequence[Project],
    changed_files: Sequence[str],
    branch: Optional[str],
) -> List[Project]:
    candidates = [p for p in projects if p.autoplan.enabled]
    logger.debug(
        "%d of %d projects have autoplan enabled", len(candidates), len(projects)
    )
    if len(changed_files) == 0:
        return []
    return filter_projects(candidates, changed_files=changed_files, branch=branch)
