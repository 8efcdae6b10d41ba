from __future__ import annotations

import logging
from typing import List, Optional

from tabulate import tabulate
import humanize

from tfaction.command import Command
from tfaction.model import InvalidConfig
from tfaction.pipeline import ProjectReport, ProjectStatus, RunReport

logger = logging.getLogger("tfaction")

# GitHub rejects issue comments longer than this
MAX_COMMENT_LENGTH = 65536

TRUNCATION_NOTICE = "\n\n_Output truncated, see the workflow logs for the full output._"

STATUS_ICONS = {
    ProjectStatus.planned: ":white_check_mark:",
    ProjectStatus.applied: ":white_check_mark:",
    ProjectStatus.skipped: ":warning:",
    ProjectStatus.failed: ":x:",
    ProjectStatus.not_run: ":white_circle:",
}


def _outcome(report: ProjectReport) -> str:
    if report.status == ProjectStatus.planned and report.result is not None:
        return "changes" if report.result.has_changes else "no changes"
    if report.status == ProjectStatus.skipped:
        return "; ".join(report.reasons)
    if report.status == ProjectStatus.failed:
        return "failed"
    if report.status == ProjectStatus.not_run:
        return "not run"
    return ""


def _duration(report: ProjectReport) -> str:
    if report.result is None:
        return ""
    return humanize.naturaldelta(report.result.duration)


def _tail(text: str, limit: int) -> str:
    # terraform prints its summary last, keep the end
    text = text.strip()
    if len(text) <= limit:
        return text
    return "...\n" + text[len(text) - limit :]


def _details(report: ProjectReport, budget: int) -> Optional[str]:
    parts: List[str] = []
    for warning in report.warnings:
        parts.append(f":warning: {warning}")
    if report.error is not None:
        parts.append(f":x: {report.error.splitlines()[0]}")

    outputs = [
        (name, output)
        for name, output in (("stdout", report.stdout), ("stderr", report.stderr))
        if output.strip()
    ]
    for name, output in outputs:
        body = _tail(output, max(budget // len(outputs), 0))
        parts.append(f"**{name}**\n\n```\n{body}\n```")

    if len(parts) == 0:
        return None

    summary = f"{report.name} ({report.project.dir})"
    body = "\n\n".join(parts)
    return f"<details><summary>{summary}</summary>\n\n{body}\n\n</details>"


def title_for(run: RunReport) -> str:
    args = f" {' '.join(run.args)}" if run.args else ""
    title = f"terraform {run.command.value}{args}"
    if run.autoplan:
        title = f"Autoplan: {title}"
    return title


def truncate(text: str, limit: int = MAX_COMMENT_LENGTH) -> str:
    if len(text) <= limit:
        return text
    logger.debug("Truncating comment from %d to %d characters", len(text), limit)
    return text[: limit - len(TRUNCATION_NOTICE)] + TRUNCATION_NOTICE


def format_report(run: RunReport, limit: int = MAX_COMMENT_LENGTH) -> str:
    if run.is_fatal:
        icon = ":x:"
    elif len(run.skipped) > 0:
        icon = ":warning:"
    else:
        icon = ":white_check_mark:"

    text = f"## {icon} {title_for(run)}\n\n"

    if run.error is not None:
        text += f"**{run.error_kind}**: run aborted\n\n"
        text += f"```\n{run.error.strip()}\n```\n\n"

    if len(run.projects) > 0:
        rows = [
            (
                STATUS_ICONS[p.status],
                p.name,
                f"`{p.project.dir}`",
                p.status.name.replace("_", " "),
                _outcome(p),
                _duration(p),
            )
            for p in run.projects
        ]
        text += tabulate(
            rows,
            headers=("", "Project", "Directory", "Status", "Result", "Duration"),
            tablefmt="github",
        )
        text += "\n"

    if run.command == Command.plan and run.has_changes:
        text += "\nComment `terraform apply` to apply the reviewed plans.\n"

    with_output = [p for p in run.projects if p.status != ProjectStatus.not_run]
    if len(with_output) > 0:
        budget = max(limit - len(text) - len(TRUNCATION_NOTICE), 0) // len(with_output)
        # markup around every block
        budget = max(budget - 200, 0)
        details = [d for d in (_details(p, budget) for p in with_output) if d]
        if len(details) > 0:
            text += "\n" + "\n\n".join(details) + "\n"

    return truncate(text, limit)


def format_config_error(e: InvalidConfig) -> str:
    text = (
        "## :x: Invalid configuration file\n\n"
        f"Config parsing failed with the following error:\n\n```\n{e}\n```\n\n"
        f"Config file loaded from `{e.source_path}`.\n\n"
        "<details><summary>Raw config file</summary>\n\n"
        f"```yml\n{e.raw_config}\n```\n\n</details>"
    )
    return truncate(text)
