from datetime import datetime
from typing import Dict, Iterable, List, Literal, Optional

import pydantic
from pydantic_core import core_schema


class Model(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="ignore")


class CommitSha(str):
    @classmethod
    def __get_pydantic_core_schema__(cls, source, handler):
        return core_schema.no_info_after_validator_function(
            cls.validate_commit_sha, core_schema.str_schema()
        )

    @classmethod
    def validate_commit_sha(cls, sha: str) -> "CommitSha":
        if len(sha) != 40:
            raise ValueError("Commit hash must have length 40")
        return cls(sha)

    def __repr__(self) -> str:
        return f"CommitSha({super().__repr__()})"


class User(Model):
    login: str
    id: Optional[int] = None


class Repository(Model):
    id: int
    name: str
    full_name: Optional[str] = None
    url: str
    html_url: Optional[str] = None
    private: Optional[bool] = None
    fork: bool = False


class PrConnection(Model):
    ref: str
    sha: CommitSha
    label: Optional[str] = None
    repo: Optional[Repository] = None


class PullRequest(Model):
    url: str
    id: int
    number: int
    state: Literal["open", "closed"]
    title: Optional[str] = None
    mergeable: Optional[bool] = None
    merged_at: Optional[datetime] = None
    base: PrConnection
    head: PrConnection
    html_url: Optional[str] = None
    user: Optional[User] = None

    @property
    def is_fork(self) -> bool:
        if self.head.repo is None or self.base.repo is None:
            return True
        return self.head.repo.fork or self.head.repo.id != self.base.repo.id

    def __str__(self) -> str:
        name = "?"
        if self.base.repo is not None:
            name = self.base.repo.full_name or self.base.repo.name
        return f"PR({name}#{self.number}, {self.id})"


class IssuePullRequestLink(Model):
    url: str
    html_url: Optional[str] = None


class Issue(Model):
    number: int
    title: Optional[str] = None
    pull_request: Optional[IssuePullRequestLink] = None


class IssueComment(Model):
    id: int
    body: str = ""
    user: Optional[User] = None
    html_url: Optional[str] = None


class Review(Model):
    id: int
    user: Optional[User] = None
    state: str
    submitted_at: Optional[datetime] = None


class Comparison(Model):
    status: str
    ahead_by: int
    behind_by: int


class PrFile(Model):
    sha: Optional[str] = None
    filename: str
    status: Literal[
        "added", "removed", "modified", "renamed", "copied", "changed", "unchanged"
    ]


def is_approved(reviews: Iterable[Review]) -> bool:
    """
    A PR counts as approved when the latest review of at least one user is
    an approval and no user's latest review requests changes. Plain comments
    do not replace an earlier verdict, a dismissal withdraws it.
    """
    latest: Dict[str, str] = {}
    for review in reviews:
        if review.user is None:
            continue
        if review.state not in ("APPROVED", "CHANGES_REQUESTED", "DISMISSED"):
            continue
        latest[review.user.login] = review.state

    states = set(latest.values())
    return "APPROVED" in states and "CHANGES_REQUESTED" not in states


class PullRequestStatus(Model):
    model_config = pydantic.ConfigDict(frozen=True)

    mergeable: bool
    approved: bool
    diverged: bool
    is_fork: bool
    head_sha: str
    head_ref: Optional[str] = None
    base_ref: Optional[str] = None

    @classmethod
    def from_github(
        cls, pr: PullRequest, reviews: List[Review], comparison: Optional[Comparison]
    ) -> "PullRequestStatus":
        return cls(
            mergeable=bool(pr.mergeable),
            approved=is_approved(reviews),
            diverged=comparison is not None and comparison.behind_by > 0,
            is_fork=pr.is_fork,
            head_sha=str(pr.head.sha),
            head_ref=pr.head.ref,
            base_ref=pr.base.ref,
        )
