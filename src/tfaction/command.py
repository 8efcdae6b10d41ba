from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re
from typing import Iterable, List, Optional, Sequence, Tuple

PROJECT_FLAG = "-project="
PROJECT_OPTIONS = ("-p", "-d")
QUOTES = ("'", '"')


class Command(str, Enum):
    plan = "plan"
    apply = "apply"


@dataclass(frozen=True)
class ParsedCommand:
    command: Command
    projects: Tuple[str, ...] = ()
    args: Tuple[str, ...] = ()

    def __str__(self) -> str:
        parts = [self.command.value]
        if self.projects:
            parts.append(PROJECT_FLAG + ",".join(self.projects))
        parts.extend(self.args)
        return " ".join(parts)


def _command_regex(triggers: Iterable[str]) -> re.Pattern:
    alternatives = "|".join(re.escape(t) for t in triggers)
    return re.compile(rf"(?:{alternatives})\s+(plan|apply)(?:\s+(.*))?")


def tokenize(text: str) -> List[str]:
    """
    Split an argument string on whitespace. Single- or double-quoted
    substrings are kept together and the quote characters are dropped, so
    ``-var="a b"`` becomes ``-var=a b``. An unterminated quote runs to the
    end of the string.
    """
    tokens: List[str] = []
    current: List[str] = []
    quote: Optional[str] = None

    for char in text:
        if quote is None and char in QUOTES:
            quote = char
        elif quote is not None and char == quote:
            quote = None
        elif quote is None and char.isspace():
            if current:
                tokens.append("".join(current))
            current = []
        else:
            current.append(char)

    if current:
        tokens.append("".join(current))

    return tokens


def split_project_list(value: str) -> List[str]:
    return [p.strip() for p in value.split(",") if p.strip() != ""]


def parse_arguments(tokens: Sequence[str]) -> Tuple[List[str], List[str]]:
    projects: List[str] = []
    args: List[str] = []

    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token.startswith(PROJECT_FLAG):
            projects.extend(split_project_list(token[len(PROJECT_FLAG) :]))
        elif (
            token in PROJECT_OPTIONS
            and i + 1 < len(tokens)
            and not tokens[i + 1].startswith("-")
        ):
            projects.extend(split_project_list(tokens[i + 1]))
            i += 1
        else:
            args.append(token)
        i += 1

    return projects, args


def parse_comment(
    body: str, triggers: Sequence[str] = ("terraform",)
) -> Optional[ParsedCommand]:
    """
    Parse ``<trigger> <plan|apply> [args...]`` from the first line of a
    comment. Returns ``None`` when the comment is not a command.
    """
    body = (body or "").strip()
    if body == "" or not triggers:
        return None

    first_line = body.splitlines()[0].strip()
    match = _command_regex(triggers).fullmatch(first_line)
    if match is None:
        return None

    command = Command(match.group(1))
    projects, args = parse_arguments(tokenize(match.group(2) or ""))

    return ParsedCommand(command=command, projects=tuple(projects), args=tuple(args))
