"""Markdown and curl parsing subsystem for curlspec.

This module splits markdown into headings and code blocks, discovers and
tokenizes curl commands, and prepares documents for the model strategy.
"""

from curlspec.parser.commands import (
    BlockCommand,
    CommandCandidate,
    CurlCommandFinder,
    split_block_commands,
)
from curlspec.parser.preprocessor import (
    ContentPreprocessor,
    PreprocessedContent,
    PreprocessingOptions,
    PreprocessingStats,
)
from curlspec.parser.structure import (
    CodeBlock,
    Heading,
    MarkdownDocument,
    StructureParser,
    slugify,
)
from curlspec.parser.tokenizer import (
    CurlInvocation,
    CurlTokenizer,
    InvocationContext,
    QuoteState,
    TokenScan,
    lex,
)

__all__ = [
    # Structure
    "CodeBlock",
    "Heading",
    "MarkdownDocument",
    "StructureParser",
    "slugify",
    # Tokenizer
    "CurlInvocation",
    "CurlTokenizer",
    "InvocationContext",
    "QuoteState",
    "TokenScan",
    "lex",
    # Command discovery
    "BlockCommand",
    "CommandCandidate",
    "CurlCommandFinder",
    "split_block_commands",
    # Preprocessor
    "ContentPreprocessor",
    "PreprocessedContent",
    "PreprocessingOptions",
    "PreprocessingStats",
]
