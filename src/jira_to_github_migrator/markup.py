"""Conversion of Jira wiki markup to GitHub Markdown."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Final

from .exceptions import MarkupConversionError
from .models import SourceUser

if TYPE_CHECKING:
    from collections.abc import Mapping

logger: logging.Logger = logging.getLogger(__name__)

# GitHub rejects issue and comment bodies above this many characters
MAX_BODY_LENGTH: Final = 65536

_USER_MENTION: Final = re.compile(r"\[~([^\]]+)\]")
_GITHUB_MENTION: Final = re.compile(r"(^|[^\w`/])(@[\w-]+)")
_CODE_TAG: Final = re.compile(r"\{(code|noformat)(?::(\w+))?(?:[:|][^}]*)?\}", re.IGNORECASE)
_TABLE_HEADER: Final = re.compile(r"(?m)^[ \t]*(\|\|.*\|\|)[ \t]*$")
_LINK: Final = re.compile(r"\[([^\[\]|]+?)[ ]*\|[ ]*(https?://[^\]\s]+)\]")
_BARE_LINK: Final = re.compile(r"\[(https?://[^\]\s|]+)\]")

_LINE_RULES: Final = (
    (re.compile(r"(?m)^[ \t]*# "), "1. "),
    (re.compile(r"(?m)^[ \t]*## "), "   1. "),
    (re.compile(r"(?m)^[ \t]*### "), "      1. "),
    (re.compile(r"(?m)^[ \t]*\*\* "), "   * "),
    (re.compile(r"(?m)^[ \t]*\*\*\* "), "      * "),
    (re.compile(r"(?m)^[ \t]*bq\.\s*"), "> "),
    # headings last, their "#" must not be read as a list item
    (re.compile(r"(?m)^h([1-6])\.\s+"), lambda m: "#" * int(m.group(1)) + " "),
)


def _tables(text: str) -> str:
    def header(match: re.Match[str]) -> str:
        cells = [c.strip() for c in match.group(1).split("||")[1:-1]]
        return "|" + "|".join(cells) + "|\n" + "|" + "|".join(":---" for _ in cells) + "|"

    return _TABLE_HEADER.sub(header, text)


def _quotes(text: str) -> str:
    parts = re.split(r"\{quote\}", text, flags=re.IGNORECASE)
    for i in range(1, len(parts), 2):
        parts[i] = "\n> " + parts[i].strip("\n").replace("\n", "\n> ") + "\n"
    return "".join(parts)


def _escape_github_mentions(text: str) -> str:
    """Wrap @name tokens in backticks, leaving inline code spans alone."""
    parts = re.split(r"(`[^`\n]*`)", text)
    for i in range(0, len(parts), 2):
        parts[i] = _GITHUB_MENTION.sub(r"\1`\2`", parts[i])
    return "".join(parts)


def _code_blocks(text: str) -> list[tuple[bool, str]]:
    """Split text into ``(is_code, chunk)`` pairs, turning ``{code}`` tags into fences."""
    chunks: list[tuple[bool, str]] = []
    position = 0
    open_tag: str | None = None
    for match in _CODE_TAG.finditer(text):
        tag = match.group(1).lower()
        if open_tag is None:
            chunks.append((False, text[position : match.start()]))
            language = match.group(2) or ""
            chunks.append((True, f"\n```{language}\n"))
            open_tag = tag
            position = match.end()
        elif tag == open_tag:
            chunks.append((True, text[position : match.start()].strip("\n") + "\n```\n"))
            open_tag = None
            position = match.end()
    rest = text[position:]
    if open_tag is not None:
        logger.debug(f"Closing unterminated {{{open_tag}}} block")
        chunks.append((True, rest.strip("\n") + "\n```\n"))
    else:
        chunks.append((False, rest))
    return chunks


class MarkdownEngine:
    """Regex based Jira wiki to Markdown converter.

    Conversions applied outside code blocks: headings, ordered and nested
    lists, table headers, quotes, ``{{monospace}}``, ``[label|url]`` links,
    ``[~user]`` mentions, and escaping of ``@name`` tokens so the import does
    not ping GitHub users.
    """

    def __init__(self, jira_base_url: str) -> None:
        self.jira_base_url = jira_base_url.rstrip("/")
        self._users: dict[str, SourceUser] = {}

    def configure_user_lookup(self, users: Mapping[str, SourceUser]) -> None:
        self._users.update(users)

    def link(self, label: str, url: str) -> str:
        return f"[{label}]({url})"

    def _user(self, key: str) -> SourceUser:
        user = self._users.get(key)
        if user is None:
            user = SourceUser(key, key, f"{self.jira_base_url}/secure/ViewProfile.jspa?name={key}")
            self._users[key] = user
        return user

    def _mention(self, match: re.Match[str]) -> str:
        user = self._user(match.group(1))
        return self.link(user.display_name, user.browser_url)

    def _convert_text(self, text: str) -> str:
        for pattern, replacement in _LINE_RULES:
            text = pattern.sub(replacement, text)
        text = _tables(text)
        text = _quotes(text)
        text = re.sub(r"\{\{(.+?)\}\}", r"`\1`", text)
        text = re.sub(r"\{color(?::[^}]*)?\}", "", text, flags=re.IGNORECASE)
        text = _LINK.sub(lambda m: self.link(m.group(1).strip(), m.group(2)), text)
        text = _BARE_LINK.sub(r"<\1>", text)
        text = _USER_MENTION.sub(self._mention, text)
        return _escape_github_mentions(text)

    def convert(self, text: str | None) -> str:
        """Convert Jira markup to Markdown.

        Raises:
            MarkupConversionError: If the result exceeds GitHub's body size limit
        """
        if not text:
            return ""
        text = text.replace("\r\n", "\n")
        converted = "".join(
            chunk if is_code or not chunk.strip() else self._convert_text(chunk) for is_code, chunk in _code_blocks(text)
        )
        if len(converted) > MAX_BODY_LENGTH:
            msg = f"Converted text is {len(converted)} characters, GitHub accepts at most {MAX_BODY_LENGTH}"
            raise MarkupConversionError(msg)
        return converted

