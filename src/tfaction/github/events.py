from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from gidgethub.routing import Router
from gidgethub.sansio import Event

from tfaction.artifacts import PlanArtifactStore
from tfaction.command import Command, ParsedCommand, parse_comment
from tfaction.config import Settings
from tfaction.github.api import API
from tfaction.github.model import (
    Issue,
    IssueComment,
    PullRequest,
    Repository,
)
from tfaction.metric import comment_post_counter, error_counter, event_counter
from tfaction.model import Config, ConfigNotFound, InvalidConfig, Project, load_config
from tfaction.pipeline import RunReport, run_projects
from tfaction.projects import (
    UnknownProjectError,
    determine_autoplan_projects,
    resolve_projects,
)
from tfaction.report import format_config_error, format_report
from tfaction.terraform import ExecutionError, TerraformExecutor

logger = logging.getLogger("tfaction")


@dataclass
class Context:
    settings: Settings
    executor: Optional[TerraformExecutor] = None
    reports: List[RunReport] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.executor is None:
            self.executor = TerraformExecutor(
                self.settings.GITHUB_WORKSPACE,
                binary=self.settings.TERRAFORM_BINARY,
                timeout=self.settings.EXECUTION_TIMEOUT,
            )

    @property
    def is_fatal(self) -> bool:
        return len(self.errors) > 0 or any(r.is_fatal for r in self.reports)


def artifact_dir(settings: Settings, repo: Repository, number: int) -> Path:
    name = (repo.full_name or repo.name).replace("/", "__")
    return settings.ARTIFACT_DIR / name / f"pr-{number}"


def artifact_store(
    settings: Settings, repo: Repository, number: int
) -> PlanArtifactStore:
    return PlanArtifactStore(
        artifact_dir(settings, repo, number),
        prefix=settings.ARTIFACT_PREFIX,
        retention_days=settings.ARTIFACT_RETENTION_DAYS,
    )


async def publish(
    api: API, context: Context, repo: Repository, number: int, body: str
) -> None:
    dry_run = context.settings.DRY_RUN
    comment_post_counter.labels(dry_run=str(dry_run).lower()).inc()
    if dry_run:
        logger.info("Dry run, not posting comment on #%d:\n%s", number, body)
        return
    await api.post_comment(repo.url, number, body)


async def _config_or_report(
    api: API,
    context: Context,
    repo: Repository,
    number: int,
    command: Command,
) -> Optional[Config]:
    try:
        return load_config(context.settings.config_file)
    except InvalidConfig as e:
        logger.error("Invalid config file %s:\n%s", e.source_path, e)
        context.reports.append(RunReport(command=command).fail("InvalidConfig", str(e)))
        await publish(api, context, repo, number, format_config_error(e))
    except ConfigNotFound as e:
        logger.error("%s", e)
        run = RunReport(command=command).fail("ConfigNotFound", str(e))
        context.reports.append(run)
        await publish(api, context, repo, number, format_report(run))
    return None


async def _execute(
    api: API,
    context: Context,
    repo: Repository,
    pr: PullRequest,
    command: Command,
    projects: Sequence[Project],
    args: Sequence[str] = (),
    autoplan: bool = False,
) -> RunReport:
    try:
        logger.info("Using %s", context.executor.version())
    except ExecutionError as e:
        logger.error("%s", e)
        run = RunReport(command=command, args=tuple(args), autoplan=autoplan)
        run.fail("ExecutionError", str(e))
        context.reports.append(run)
        await publish(api, context, repo, pr.number, format_report(run))
        return run

    status = await api.get_status(repo.url, pr.number, pr=pr)
    run = run_projects(
        command,
        projects,
        status,
        executor=context.executor,
        artifacts=artifact_store(context.settings, repo, pr.number),
        args=args,
    )
    run.autoplan = autoplan
    context.reports.append(run)
    await publish(api, context, repo, pr.number, format_report(run))
    logger.info("Finished handling %s, API calls: %d", pr, api.call_count)
    return run


async def handle_command(
    api: API,
    context: Context,
    repo: Repository,
    number: int,
    parsed: ParsedCommand,
) -> Optional[RunReport]:
    logger.info("Handling '%s' on %s#%d", parsed, repo.full_name, number)

    config = await _config_or_report(api, context, repo, number, parsed.command)
    if config is None:
        return None

    pr = await api.get_pull(repo.url, number)

    # explicit runs ignore changed files and branch patterns
    try:
        projects = resolve_projects(parsed.projects, config.projects)
    except UnknownProjectError as e:
        logger.error("%s", e)
        run = RunReport(command=parsed.command, args=parsed.args)
        run.fail("ConfigLookupError", str(e))
        context.reports.append(run)
        await publish(api, context, repo, number, format_report(run))
        return run

    return await _execute(
        api, context, repo, pr, parsed.command, projects, args=parsed.args
    )


async def handle_autoplan(
    api: API, context: Context, repo: Repository, pr: PullRequest
) -> Optional[RunReport]:
    logger.info("Begin autoplan for %s", pr)

    config = await _config_or_report(api, context, repo, pr.number, Command.plan)
    if config is None:
        return None

    changed_files = await api.list_changed_files(repo.url, pr.number)
    projects = determine_autoplan_projects(
        config.projects, changed_files, branch=pr.base.ref
    )
    if len(projects) == 0:
        logger.info("No autoplan projects for %s", pr)
        return None

    return await _execute(api, context, repo, pr, Command.plan, projects, autoplan=True)


def create_router() -> Router:
    router = Router()

    @router.register("issue_comment", action="created")
    async def on_issue_comment(event: Event, api: API, context: Context):
        issue = Issue.model_validate(event.data["issue"])
        if issue.pull_request is None:
            logger.debug("Comment on issue #%d is not on a pull request", issue.number)
            return

        comment = IssueComment.model_validate(event.data["comment"])
        parsed = parse_comment(comment.body, context.settings.COMMAND_TRIGGERS)
        if parsed is None:
            logger.info("Comment %d does not contain a command, skipping", comment.id)
            return

        repo = Repository.model_validate(event.data["repository"])
        await handle_command(api, context, repo, issue.number, parsed)

    async def on_pr_update(event: Event, api: API, context: Context):
        pr = PullRequest.model_validate(event.data["pull_request"])
        repo = Repository.model_validate(event.data["repository"])
        logger.debug("Received pull_request event on PR #%d", pr.number)
        await handle_autoplan(api, context, repo, pr)

    for action in ("opened", "synchronize", "reopened"):
        router.add(on_pr_update, "pull_request", action=action)

    @router.register("pull_request", action="closed")
    async def on_pr_closed(event: Event, api: API, context: Context):
        pr = PullRequest.model_validate(event.data["pull_request"])
        repo = Repository.model_validate(event.data["repository"])
        store = artifact_store(context.settings, repo, pr.number)
        if not store.directory.exists():
            logger.debug("No plan artifacts stored for %s", pr)
            return
        store.clear()

    return router


async def dispatch(router: Router, event: Event, api: API, context: Context) -> None:
    event_counter.labels(event=event.event, action=event.data.get("action", "")).inc()
    logger.debug("Dispatching event %s", event.event)
    try:
        await router.dispatch(event, api, context=context)
    except Exception as e:
        error_counter.labels(context="event_dispatch").inc()
        logger.error("Exception raised when dispatching event", exc_info=True)
        context.errors.append(f"{type(e).__name__}: {e}")
