"""Markdown structure parser.

Splits raw markdown into headings and fenced code blocks and flags the
blocks that contain a curl invocation. The result is an immutable
:class:`MarkdownDocument`; parsing is a pure function of the input string.
"""

from __future__ import annotations

import re

import structlog
from pydantic import BaseModel, ConfigDict, Field

logger = structlog.get_logger(__name__)

FENCE = "```"
HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+)$")


class Heading(BaseModel):
    """A markdown heading.

    Attributes:
        level: Heading level (1-6)
        text: Heading text without the leading hashes
        line_number: 1-based line number
        slug: URL-friendly identifier derived from the text
    """

    model_config = ConfigDict(frozen=True)

    level: int = Field(ge=1, le=6)
    text: str
    line_number: int = Field(ge=1)
    slug: str


class CodeBlock(BaseModel):
    """A fenced code block.

    Attributes:
        language: Language tag after the opening fence, if any
        content: Lines between the fences joined with newlines
        line_number: 1-based line number of the opening fence
        line_count: Number of content lines
        is_curl_block: Whether the content contains a curl invocation
    """

    model_config = ConfigDict(frozen=True)

    language: str | None = None
    content: str
    line_number: int = Field(ge=1)
    line_count: int = Field(ge=0)
    is_curl_block: bool


class MarkdownDocument(BaseModel):
    """Ordered headings and code blocks of one markdown source."""

    model_config = ConfigDict(frozen=True)

    headings: tuple[Heading, ...] = ()
    code_blocks: tuple[CodeBlock, ...] = ()
    line_count: int = 0

    @property
    def curl_blocks(self) -> tuple[CodeBlock, ...]:
        """Code blocks flagged as containing curl."""
        return tuple(block for block in self.code_blocks if block.is_curl_block)

    def heading_before(self, line_number: int) -> Heading | None:
        """Return the closest heading above the given line, if any.

        Args:
            line_number: 1-based line number

        Returns:
            The nearest preceding heading, or None
        """
        found: Heading | None = None
        for heading in self.headings:
            if heading.line_number >= line_number:
                break
            found = heading
        return found

    @property
    def title(self) -> str | None:
        """Text of the first level-1 heading, if any."""
        for heading in self.headings:
            if heading.level == 1:
                return heading.text
        return None


def slugify(text: str) -> str:
    """Derive a URL-friendly identifier from heading text."""
    slug = re.sub(r"[^a-z0-9\s-]", "", text.lower())
    return re.sub(r"\s+", "-", slug.strip())


def parse_fence_language(line: str) -> str | None:
    """Return the language tag of an opening fence line, if any."""
    tag = line[len(FENCE):].strip()
    if not tag:
        return None
    return tag.split()[0]


class StructureParser:
    """Parser producing the heading/code-block structure of markdown.

    Headings are only recognised outside fenced code blocks, so shell
    comments such as ``# create a user`` inside a bash block are not
    mistaken for headings.
    """

    def parse(self, markdown: str) -> MarkdownDocument:
        """Parse markdown into an immutable document structure.

        An opening fence without a matching closing fence is not emitted
        as a block; a warning is logged so the dropped content is visible.

        Args:
            markdown: Raw markdown source

        Returns:
            MarkdownDocument with headings and code blocks in source order
        """
        lines = markdown.split("\n")
        headings: list[Heading] = []
        blocks: list[CodeBlock] = []

        open_line: int | None = None
        language: str | None = None
        content_lines: list[str] = []

        for index, line in enumerate(lines):
            line_number = index + 1

            if line.startswith(FENCE):
                if open_line is None:
                    open_line = line_number
                    language = parse_fence_language(line)
                    content_lines = []
                else:
                    content = "\n".join(content_lines)
                    blocks.append(
                        CodeBlock(
                            language=language,
                            content=content,
                            line_number=open_line,
                            line_count=len(content_lines),
                            is_curl_block="curl" in content,
                        )
                    )
                    open_line = None
                    language = None
                    content_lines = []
                continue

            if open_line is not None:
                content_lines.append(line)
                continue

            match = HEADING_PATTERN.match(line)
            if match:
                text = match.group(2).strip()
                headings.append(
                    Heading(
                        level=len(match.group(1)),
                        text=text,
                        line_number=line_number,
                        slug=slugify(text),
                    )
                )

        if open_line is not None:
            # TODO: decide whether an unterminated trailing fence should be
            # emitted as a block instead of dropped.
            logger.warning(
                "unterminated_code_block",
                line_number=open_line,
                dropped_lines=len(content_lines),
            )

        return MarkdownDocument(
            headings=tuple(headings),
            code_blocks=tuple(blocks),
            line_count=len(lines),
        )
