"""Content preprocessor preparing markdown for the model strategy.

Applies a fixed pipeline of independently toggleable transforms:

1. normalize_curl_commands - join multi-line curl commands onto one line
2. remove_comments - drop shell comment lines from bash/sh/untyped blocks
3. normalize_whitespace - collapse blank-line runs, trim trailing spaces
4. enhance_structure - spacing before headings, markers for bare curl blocks
5. add_context_markers - wrap curl blocks in CURL_BLOCK_START/END markers

The processed text is then re-parsed to compute statistics. Preprocessing
only reformats; it never drops a curl command.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel, Field

from curlspec.models import ValidationReport
from curlspec.parser.commands import CurlCommandFinder, split_block_commands
from curlspec.parser.structure import (
    FENCE,
    HEADING_PATTERN,
    MarkdownDocument,
    StructureParser,
    parse_fence_language,
)
from curlspec.parser.tokenizer import CurlInvocation

logger = structlog.get_logger(__name__)

COMMENT_STRIP_LANGUAGES = frozenset({"bash", "sh", ""})
ENDPOINT_MARKER = "<!-- API Endpoint -->"
BLOCK_END_MARKER = "<!-- CURL_BLOCK_END -->"

_EXCESS_BLANK_LINES = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")
_TRAILING_SPACE = re.compile(r"[ \t]+$", re.MULTILINE)


class PreprocessingOptions(BaseModel):
    """Toggles for the preprocessing transforms (all enabled by default)."""

    normalize_curl_commands: bool = True
    remove_comments: bool = True
    normalize_whitespace: bool = True
    enhance_structure: bool = True
    add_context_markers: bool = True


class PreprocessingStats(BaseModel):
    """Statistics computed on the processed text."""

    original_lines: int = 0
    processed_lines: int = 0
    curl_commands_found: int = 0
    headings_found: int = 0
    code_blocks_found: int = 0


class PreprocessedContent(BaseModel):
    """Result of preprocessing a markdown document.

    Attributes:
        original_text: Input markdown
        processed_text: Markdown after all enabled transforms
        extracted_invocations: Curl invocations found in the processed text
        document: Structure of the processed text
        transformations: Names of the transforms that ran, in order
        stats: Line/command/heading/block counts
        preprocessed_at: UTC timestamp of the run
    """

    original_text: str
    processed_text: str
    extracted_invocations: list[CurlInvocation] = Field(default_factory=list)
    document: MarkdownDocument
    transformations: list[str] = Field(default_factory=list)
    stats: PreprocessingStats = Field(default_factory=PreprocessingStats)
    preprocessed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def _block_spans(lines: list[str]) -> list[tuple[int, int]]:
    """Return (open, close) line indexes of every terminated fenced block."""
    spans: list[tuple[int, int]] = []
    open_index: int | None = None
    for index, line in enumerate(lines):
        if line.startswith(FENCE):
            if open_index is None:
                open_index = index
            else:
                spans.append((open_index, index))
                open_index = None
    return spans


def normalize_curl_commands(text: str) -> str:
    """Rewrite every curl command inside code blocks onto a single line."""
    lines = text.split("\n")
    output: list[str] = []
    cursor = 0

    for open_index, close_index in _block_spans(lines):
        output.extend(lines[cursor : open_index + 1])
        body = lines[open_index + 1 : close_index]
        commands = {command.start: command for command in split_block_commands("\n".join(body))}

        offset = 0
        while offset < len(body):
            command = commands.get(offset)
            if command is None:
                output.append(body[offset])
                offset += 1
                continue
            output.append(re.sub(r"\s+", " ", command.raw).strip())
            offset = command.end + 1

        output.append(lines[close_index])
        cursor = close_index + 1

    output.extend(lines[cursor:])
    return "\n".join(output)


def remove_comments(text: str) -> str:
    """Drop ``#`` comment lines from bash, sh and untyped code blocks.

    Lines that mention curl are kept even when commented out.
    """
    kept: list[str] = []
    in_block = False
    language = ""

    for line in text.split("\n"):
        if line.startswith(FENCE):
            if not in_block:
                in_block = True
                language = (parse_fence_language(line) or "").lower()
            else:
                in_block = False
                language = ""
            kept.append(line)
            continue

        if (
            in_block
            and language in COMMENT_STRIP_LANGUAGES
            and line.strip().startswith("#")
            and "curl" not in line
        ):
            continue
        kept.append(line)

    return "\n".join(kept)


def normalize_whitespace(text: str) -> str:
    """Collapse runs of blank lines to one and trim trailing whitespace."""
    text = _TRAILING_SPACE.sub("", text)
    text = _EXCESS_BLANK_LINES.sub("\n\n", text)
    return text.strip()


def enhance_structure(text: str) -> str:
    """Add spacing before headings and mark curl blocks lacking a description.

    A curl block lacks a description when the nearest non-blank line above
    its opening fence is a heading, or when nothing precedes it.
    """
    lines = text.split("\n")
    curl_openings = {
        open_index
        for open_index, close_index in _block_spans(lines)
        if "curl" in "\n".join(lines[open_index + 1 : close_index])
    }

    enhanced: list[str] = []
    in_block = False

    for index, line in enumerate(lines):
        if line.startswith(FENCE):
            if not in_block and index in curl_openings:
                previous = next((p for p in reversed(enhanced) if p.strip()), None)
                if previous is None or HEADING_PATTERN.match(previous):
                    if enhanced and enhanced[-1].strip():
                        enhanced.append("")
                    enhanced.append(ENDPOINT_MARKER)
            in_block = not in_block
            enhanced.append(line)
            continue

        if not in_block and HEADING_PATTERN.match(line):
            if enhanced and enhanced[-1].strip():
                enhanced.append("")

        enhanced.append(line)

    return "\n".join(enhanced)


def add_context_markers(text: str) -> str:
    """Wrap each curl code block in start/end markers naming its heading."""
    lines = text.split("\n")
    spans = {
        open_index: close_index
        for open_index, close_index in _block_spans(lines)
        if "curl" in "\n".join(lines[open_index + 1 : close_index])
    }
    closing = set(spans.values())

    marked: list[str] = []
    in_block = False
    heading = ""
    block_count = 0

    for index, line in enumerate(lines):
        if not in_block:
            match = HEADING_PATTERN.match(line)
            if match:
                heading = match.group(2).strip()

        if line.startswith(FENCE):
            if not in_block:
                block_count += 1
                if index in spans:
                    label = heading or f"Block_{block_count}"
                    marked.append(f"<!-- CURL_BLOCK_START: {label} -->")
            elif index in closing:
                marked.append(line)
                marked.append(BLOCK_END_MARKER)
                in_block = False
                continue
            in_block = not in_block

        marked.append(line)

    return "\n".join(marked)


class ContentPreprocessor:
    """Prepares markdown for the model strategy.

    Args:
        parser: Structure parser used for the final statistics
        finder: Curl command finder used for the final statistics
    """

    def __init__(
        self,
        parser: StructureParser | None = None,
        finder: CurlCommandFinder | None = None,
    ) -> None:
        self._parser = parser or StructureParser()
        self._finder = finder or CurlCommandFinder(parser=self._parser)

    def preprocess(
        self, markdown: str, options: PreprocessingOptions | None = None
    ) -> PreprocessedContent:
        """Run the enabled transforms and compute statistics.

        Args:
            markdown: Raw markdown source
            options: Transform toggles (all enabled when omitted)

        Returns:
            PreprocessedContent with processed text and statistics
        """
        options = options or PreprocessingOptions()
        processed = markdown
        transformations: list[str] = []

        pipeline = [
            ("normalize_curl_commands", options.normalize_curl_commands, normalize_curl_commands),
            ("remove_comments", options.remove_comments, remove_comments),
            ("normalize_whitespace", options.normalize_whitespace, normalize_whitespace),
            ("enhance_structure", options.enhance_structure, enhance_structure),
            ("add_context_markers", options.add_context_markers, add_context_markers),
        ]
        for name, enabled, transform in pipeline:
            if enabled:
                processed = transform(processed)
                transformations.append(name)

        document = self._parser.parse(processed)
        invocations = self._finder.extract_invocations(
            processed, document, include_inline=False
        )

        stats = PreprocessingStats(
            original_lines=len(markdown.split("\n")),
            processed_lines=len(processed.split("\n")),
            curl_commands_found=len(invocations),
            headings_found=len(document.headings),
            code_blocks_found=len(document.code_blocks),
        )

        logger.info(
            "content_preprocessed",
            transformations=transformations,
            **stats.model_dump(),
        )

        return PreprocessedContent(
            original_text=markdown,
            processed_text=processed,
            extracted_invocations=invocations,
            document=document,
            transformations=transformations,
            stats=stats,
        )

    def prepare_for_model(
        self,
        markdown: str,
        options: PreprocessingOptions | None = None,
        add_instructions: bool = True,
        add_metadata: bool = True,
    ) -> str:
        """Preprocess markdown and frame it for the model service.

        Args:
            markdown: Raw markdown source
            options: Transform toggles
            add_instructions: Prepend an instruction preamble
            add_metadata: Append a document metadata trailer

        Returns:
            Text ready to send to the document extraction operation
        """
        preprocessed = self.preprocess(markdown, options)
        text = preprocessed.processed_text

        if add_instructions:
            text = f"{self._instructions(preprocessed)}\n\n{text}"
        if add_metadata:
            text = f"{text}\n\n{self._metadata(preprocessed)}"
        return text

    def _instructions(self, preprocessed: PreprocessedContent) -> str:
        stats = preprocessed.stats
        return "\n".join(
            [
                "<!-- PARSING INSTRUCTIONS -->",
                "<!-- This document describes HTTP APIs through curl commands. -->",
                f"<!-- {stats.curl_commands_found} curl commands in "
                f"{stats.code_blocks_found} code blocks, "
                f"{stats.headings_found} headings. -->",
                "<!-- Extract for every command: method, URL, headers, "
                "authentication, body and parameters. -->",
                "<!-- Use the surrounding headings to name each endpoint. -->",
                "<!-- END PARSING INSTRUCTIONS -->",
            ]
        )

    def _metadata(self, preprocessed: PreprocessedContent) -> str:
        stats = preprocessed.stats
        return "\n".join(
            [
                "<!-- DOCUMENT METADATA -->",
                f"<!-- Processed at: {preprocessed.preprocessed_at.isoformat()} -->",
                f"<!-- Transformations: {', '.join(preprocessed.transformations) or 'none'} -->",
                f"<!-- Lines: {stats.original_lines} original, "
                f"{stats.processed_lines} processed -->",
                "<!-- END DOCUMENT METADATA -->",
            ]
        )

    def validate_preprocessed(self, preprocessed: PreprocessedContent) -> ValidationReport:
        """Check that preprocessing kept every curl command of the original.

        Args:
            preprocessed: Output of :meth:`preprocess`

        Returns:
            ValidationReport; an error is reported when commands were lost
        """
        report = ValidationReport()
        original = self._finder.extract_invocations(
            preprocessed.original_text, include_inline=False
        )
        found = preprocessed.stats.curl_commands_found

        if found < len(original):
            report.errors.append(
                f"Preprocessing lost curl commands: {len(original)} before, {found} after"
            )
        if not preprocessed.transformations:
            report.warnings.append("No preprocessing transformations were applied")
        if preprocessed.stats.processed_lines > preprocessed.stats.original_lines * 2:
            report.suggestions.append(
                "Processed text is more than twice the original length; "
                "consider disabling context markers for large documents"
            )

        report.is_valid = not report.errors
        if not report.is_valid:
            logger.warning(
                "preprocessing_lost_commands",
                original=len(original),
                processed=found,
            )
        return report
