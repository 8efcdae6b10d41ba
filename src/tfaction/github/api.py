import logging
from typing import AsyncIterator, List, Optional

from gidgethub import BadRequest
from gidgethub.abc import GitHubAPI

from tfaction.github.model import (
    Comparison,
    PrFile,
    PullRequest,
    PullRequestStatus,
    Review,
)

logger = logging.getLogger("tfaction")


class API:
    gh: GitHubAPI

    call_count: int

    def __init__(self, gh: GitHubAPI):
        self.gh = gh
        self.call_count = 0

    async def get_pull(self, repo_url: str, number: int) -> PullRequest:
        self.call_count += 1
        url = f"{repo_url}/pulls/{number}"
        logger.debug("Get pull %s", url)
        item = await self.gh.getitem(url)
        return PullRequest.model_validate(item)

    async def get_reviews(self, repo_url: str, number: int) -> AsyncIterator[Review]:
        self.call_count += 1
        url = f"{repo_url}/pulls/{number}/reviews"
        logger.debug("Get reviews %s", url)
        async for item in self.gh.getiter(url):
            yield Review.model_validate(item)

    async def compare(self, repo_url: str, base: str, head: str) -> Optional[Comparison]:
        self.call_count += 1
        url = f"{repo_url}/compare/{base}...{head}"
        logger.debug("Compare %s", url)
        try:
            return Comparison.model_validate(await self.gh.getitem(url))
        except BadRequest as e:
            if e.status_code == 404:
                logger.warning(
                    "Unable to compare %s...%s, assuming no divergence", base, head
                )
                return None
            raise e

    async def get_pull_request_files(
        self, repo_url: str, number: int
    ) -> AsyncIterator[PrFile]:
        self.call_count += 1
        url = f"{repo_url}/pulls/{number}/files"
        logger.debug("Getting files for PR #%d %s", number, url)
        async for item in self.gh.getiter(url):
            yield PrFile.model_validate(item)

    async def list_changed_files(self, repo_url: str, number: int) -> List[str]:
        files = [f.filename async for f in self.get_pull_request_files(repo_url, number)]
        logger.debug("PR #%d changed %d file(s)", number, len(files))
        return files

    async def get_status(
        self, repo_url: str, number: int, pr: Optional[PullRequest] = None
    ) -> PullRequestStatus:
        if pr is None:
            pr = await self.get_pull(repo_url, number)
        reviews = [r async for r in self.get_reviews(repo_url, number)]
        comparison = await self.compare(repo_url, pr.base.ref, pr.head.sha)
        status = PullRequestStatus.from_github(pr, reviews, comparison)
        logger.debug(
            "Status of %s: mergeable=%s approved=%s diverged=%s fork=%s",
            pr,
            status.mergeable,
            status.approved,
            status.diverged,
            status.is_fork,
        )
        return status

    async def post_comment(self, repo_url: str, number: int, body: str) -> None:
        self.call_count += 1
        url = f"{repo_url}/issues/{number}/comments"
        logger.debug("Posting comment to %s (%d characters)", url, len(body))
        await self.gh.post(url, data={"body": body})
