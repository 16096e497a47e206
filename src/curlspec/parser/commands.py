"""Discovery of curl commands in markdown.

Finds every logical curl command in a document: commands inside fenced
code blocks (joining backslash continuations and multi-line quoted
bodies) and inline single-backtick snippets in prose. Candidates are
returned in document order so downstream processing is reproducible.
"""

from __future__ import annotations

import re
from typing import Literal, NamedTuple

import structlog
from pydantic import BaseModel, Field

from curlspec.parser.structure import FENCE, MarkdownDocument, StructureParser
from curlspec.parser.tokenizer import (
    CurlInvocation,
    CurlTokenizer,
    InvocationContext,
    has_open_quote,
)

logger = structlog.get_logger(__name__)

INLINE_CURL_PATTERN = re.compile(r"`(curl\s[^`]+)`")
_PROMPT_PREFIX = re.compile(r"^\$\s+")


class CommandCandidate(BaseModel):
    """A raw curl command found in a document.

    Attributes:
        raw: Logical command text with continuations joined
        line_number: 1-based line where the command starts
        heading: Nearest heading above the command
        language: Language tag of the enclosing code block
        source: Whether the command came from a code block or inline code
    """

    raw: str
    line_number: int = Field(ge=1)
    heading: str | None = None
    language: str | None = None
    source: Literal["block", "inline"] = "block"

    def context(self) -> InvocationContext:
        """Build the invocation context for this candidate."""
        return InvocationContext(
            heading=self.heading,
            description=self.heading,
            language=self.language,
        )


def _starts_command(line: str) -> bool:
    return line == "curl" or line.startswith("curl ")


def _clean(line: str) -> str:
    return _PROMPT_PREFIX.sub("", line.strip())


def join_command_lines(lines: list[str]) -> str:
    """Join the physical lines of one command into a single logical line."""
    parts: list[str] = []
    for line in lines:
        if line.endswith("\\"):
            line = line[:-1]
        line = line.strip()
        if line:
            parts.append(line)
    return " ".join(parts)


class BlockCommand(NamedTuple):
    """One logical curl command inside a code block.

    Attributes:
        start: Offset of the first physical line within the block
        end: Offset of the last physical line within the block
        raw: Logical command with continuations joined
    """

    start: int
    end: int
    raw: str


def split_block_commands(content: str) -> list[BlockCommand]:
    """Split code block content into logical curl commands.

    A command starts on a line beginning with ``curl`` (an optional ``$ ``
    prompt is ignored) and continues while the previous line ends with a
    backslash or a quoted segment is still open.

    Args:
        content: Code block content

    Returns:
        Commands in block order
    """
    commands: list[BlockCommand] = []
    current: list[str] = []
    start = 0

    def _continues() -> bool:
        return current[-1].endswith("\\") or has_open_quote(join_command_lines(current))

    def _flush(end: int) -> None:
        commands.append(BlockCommand(start, end, join_command_lines(current)))
        current.clear()

    for offset, physical in enumerate(content.split("\n")):
        line = _clean(physical)

        if current and _starts_command(line) and not current[-1].endswith("\\"):
            _flush(offset - 1)

        if not current:
            if _starts_command(line):
                current.append(line)
                start = offset
                if not _continues():
                    _flush(offset)
            continue

        current.append(line)
        if not _continues():
            _flush(offset)

    if current:
        _flush(start + len(current) - 1)

    return commands


class CurlCommandFinder:
    """Finds curl command candidates and tokenizes them.

    Args:
        parser: Structure parser (a default instance when omitted)
        tokenizer: Curl tokenizer (a default instance when omitted)
    """

    def __init__(
        self,
        parser: StructureParser | None = None,
        tokenizer: CurlTokenizer | None = None,
    ) -> None:
        self._parser = parser or StructureParser()
        self._tokenizer = tokenizer or CurlTokenizer()

    def find(
        self, markdown: str, document: MarkdownDocument | None = None
    ) -> list[CommandCandidate]:
        """Find every curl command in code blocks and inline code.

        Args:
            markdown: Raw markdown source
            document: Pre-parsed structure of the same source

        Returns:
            Candidates ordered by line number
        """
        document = document or self._parser.parse(markdown)
        candidates: list[CommandCandidate] = []

        for block in document.curl_blocks:
            heading = document.heading_before(block.line_number)
            for command in split_block_commands(block.content):
                # Content starts on the line after the opening fence
                line_number = block.line_number + 1 + command.start
                candidates.append(
                    CommandCandidate(
                        raw=command.raw,
                        line_number=line_number,
                        heading=heading.text if heading else None,
                        language=block.language,
                        source="block",
                    )
                )

        candidates.extend(self._find_inline(markdown, document))
        candidates.sort(key=lambda candidate: candidate.line_number)

        logger.debug(
            "curl_candidates_found",
            total=len(candidates),
            inline=sum(1 for c in candidates if c.source == "inline"),
        )
        return candidates

    def _find_inline(
        self, markdown: str, document: MarkdownDocument
    ) -> list[CommandCandidate]:
        """Find single-backtick curl snippets outside fenced blocks."""
        found: list[CommandCandidate] = []
        in_block = False
        for index, line in enumerate(markdown.split("\n")):
            if line.startswith(FENCE):
                in_block = not in_block
                continue
            if in_block:
                continue
            for match in INLINE_CURL_PATTERN.finditer(line):
                heading = document.heading_before(index + 1)
                found.append(
                    CommandCandidate(
                        raw=match.group(1).strip(),
                        line_number=index + 1,
                        heading=heading.text if heading else None,
                        source="inline",
                    )
                )
        return found

    def tokenize(self, candidate: CommandCandidate) -> CurlInvocation | None:
        """Tokenize one candidate, keeping its location and context."""
        return self._tokenizer.tokenize(
            candidate.raw,
            line_number=candidate.line_number,
            context=candidate.context(),
        )

    def extract_invocations(
        self,
        markdown: str,
        document: MarkdownDocument | None = None,
        include_inline: bool = True,
    ) -> list[CurlInvocation]:
        """Find and tokenize curl commands, skipping commands without a URL.

        Args:
            markdown: Raw markdown source
            document: Pre-parsed structure of the same source
            include_inline: Whether inline snippets are included

        Returns:
            Successfully tokenized invocations in document order
        """
        invocations: list[CurlInvocation] = []
        for candidate in self.find(markdown, document):
            if candidate.source == "inline" and not include_inline:
                continue
            invocation = self.tokenize(candidate)
            if invocation is None:
                logger.info(
                    "curl_command_skipped",
                    line_number=candidate.line_number,
                    reason="no_url",
                )
                continue
            invocations.append(invocation)
        return invocations
