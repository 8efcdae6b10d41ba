import asyncio
from contextlib import asynccontextmanager
import json
import logging
from pathlib import Path
from typing import List, Optional
import uuid

import typer
from gidgethub import aiohttp as gh_aiohttp
from gidgethub import sansio
import aiohttp
import cachetools

from tfaction.command import parse_comment
from tfaction.config import Settings
from tfaction.github.api import API
from tfaction.github.events import Context, create_router, dispatch
from tfaction.logger import configure_logging
from tfaction.metric import push_metrics
from tfaction.model import ConfigNotFound, InvalidConfig, load_config
from tfaction.projects import UnknownProjectError, resolve_projects

logger = logging.getLogger("tfaction")

app = typer.Typer()
httpcache = cachetools.LRUCache(maxsize=500)


@app.callback()
def init(ctx: typer.Context):
    settings = Settings.from_env()
    configure_logging(settings)
    ctx.obj = settings


@asynccontextmanager
async def github_client(settings: Settings):
    async with aiohttp.ClientSession() as session:
        if settings.GITHUB_TOKEN is None:
            logger.warning("GITHUB_TOKEN is not set, using unauthenticated requests")
        gh = gh_aiohttp.GitHubAPI(
            session,
            "tfaction",
            oauth_token=settings.GITHUB_TOKEN,
            base_url=settings.GITHUB_API_URL,
            cache=httpcache,
        )
        yield gh


async def handle_event(settings: Settings, event: sansio.Event) -> Context:
    context = Context(settings=settings)
    router = create_router()
    async with github_client(settings) as gh:
        api = API(gh)
        await dispatch(router, event, api, context)
    return context


@app.command()
def run(
    ctx: typer.Context,
    event_name: Optional[str] = typer.Option(None, help="Defaults to GITHUB_EVENT_NAME"),
    event_path: Optional[Path] = typer.Option(None, help="Defaults to GITHUB_EVENT_PATH"),
):
    settings: Settings = ctx.obj
    event_name = event_name or settings.GITHUB_EVENT_NAME
    event_path = event_path or settings.GITHUB_EVENT_PATH
    if event_name is None or event_path is None:
        typer.echo("Event name and event payload path are required", err=True)
        raise typer.Exit(2)

    data = json.loads(event_path.read_text())
    event = sansio.Event(data, event=event_name, delivery_id=str(uuid.uuid4()))
    logger.info("Handling %s event (%s)", event_name, data.get("action", "-"))

    context = asyncio.run(handle_event(settings, event))

    if settings.PUSH_GATEWAY is not None:
        push_metrics(settings.PUSH_GATEWAY)

    if context.is_fatal:
        for error in context.errors:
            logger.error("%s", error)
        raise typer.Exit(1)


@app.command()
def parse(ctx: typer.Context, comment: str):
    settings: Settings = ctx.obj
    parsed = parse_comment(comment, settings.COMMAND_TRIGGERS)
    if parsed is None:
        typer.echo("No command found")
        raise typer.Exit(1)
    typer.echo(f"command:  {parsed.command.value}")
    typer.echo(f"projects: {', '.join(parsed.projects) or '-'}")
    typer.echo(f"args:     {' '.join(parsed.args) or '-'}")


@app.command()
def resolve(
    ctx: typer.Context,
    project: List[str] = typer.Option([], "--project", "-p"),
    changed_file: List[str] = typer.Option([], "--changed-file", "-f"),
    branch: Optional[str] = typer.Option(None),
    config: Optional[Path] = typer.Option(None, help="Defaults to CONFIG_PATH"),
):
    settings: Settings = ctx.obj
    try:
        cfg = load_config(config or settings.config_file)
        projects = resolve_projects(
            project, cfg.projects, changed_files=changed_file, branch=branch
        )
    except (ConfigNotFound, InvalidConfig, UnknownProjectError) as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)

    if len(projects) == 0:
        typer.echo("No projects matched")
        return
    for p in projects:
        typer.echo(f"{p.name}\t{p.dir}")
