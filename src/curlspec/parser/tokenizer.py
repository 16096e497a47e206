"""Curl command tokenizer.

Converts one logical curl command into method, URL, headers and body in
two phases:

1. Lexing with an explicit quote-state machine (UNQUOTED, IN_SINGLE,
   IN_DOUBLE). Whitespace separates tokens only while UNQUOTED. Quote
   characters are kept in the token and toggle the state; there is no
   escape-sequence handling.
2. A semantic pass over the tokens that understands ``-X``, ``-H`` and
   ``-d`` style options and picks the first http(s) token as the URL.

Backslash line continuations are joined (see :func:`join_continuations`)
before lexing, so a command may be passed as written in the document.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from curlspec.models import HTTP_METHODS

logger = structlog.get_logger(__name__)

METHOD_FLAGS = frozenset({"-X", "--request"})
HEADER_FLAGS = frozenset({"-H", "--header"})
DATA_FLAGS = frozenset({"-d", "--data", "--data-raw"})
URL_PREFIXES = ("http://", "https://")
DEFAULT_METHOD = "GET"

_CONTINUATION = re.compile(r"[ \t]*\\[ \t]*\r?\n\s*")


class QuoteState(str, Enum):
    """Lexer state while scanning a command.

    Values:
        UNQUOTED: Outside any quotes; whitespace splits tokens
        IN_SINGLE: Inside a single-quoted segment
        IN_DOUBLE: Inside a double-quoted segment
    """

    UNQUOTED = "unquoted"
    IN_SINGLE = "in_single"
    IN_DOUBLE = "in_double"


# Characters that change the lexer state. Anything not listed leaves the
# state unchanged.
QUOTE_TRANSITIONS: dict[tuple[QuoteState, str], QuoteState] = {
    (QuoteState.UNQUOTED, "'"): QuoteState.IN_SINGLE,
    (QuoteState.UNQUOTED, '"'): QuoteState.IN_DOUBLE,
    (QuoteState.IN_SINGLE, "'"): QuoteState.UNQUOTED,
    (QuoteState.IN_DOUBLE, '"'): QuoteState.UNQUOTED,
}


class InvocationContext(BaseModel):
    """Document context surrounding a curl invocation."""

    heading: str | None = None
    description: str | None = None
    language: str | None = None


class CurlInvocation(BaseModel):
    """A tokenized curl command.

    Attributes:
        raw: The logical command text that was tokenized
        method: Upper-case HTTP method (GET when not given)
        url: Request URL
        headers: Header map in source order
        body: Parsed JSON body, raw body text, or None
        line_number: 1-based source line of the command
        context: Surrounding heading/description
    """

    raw: str
    method: str = DEFAULT_METHOD
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    line_number: int = Field(default=1, ge=1)
    context: InvocationContext = Field(default_factory=InvocationContext)

    def to_command(self) -> str:
        """Synthesize a single-line curl command for this invocation."""
        parts = ["curl", "-X", self.method]
        for key, value in self.headers.items():
            parts.extend(["-H", shell_quote(f"{key}: {value}")])
        if self.body is not None:
            data = self.body if isinstance(self.body, str) else json.dumps(self.body)
            parts.extend(["-d", shell_quote(data)])
        parts.append(shell_quote(self.url))
        return " ".join(parts)


class TokenScan(BaseModel):
    """Everything the semantic pass recognised, including partial results.

    Unlike :class:`CurlInvocation`, a scan exists even when no URL was
    found, so callers can score partial parses.
    """

    tokens: list[str] = Field(default_factory=list)
    method: str | None = None
    url: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    has_body: bool = False

    @property
    def resolved_method(self) -> str:
        """Explicit method, or the GET default."""
        return self.method or DEFAULT_METHOD


def lex(command: str) -> list[str]:
    """Split a command into tokens, honouring single and double quotes.

    Args:
        command: One logical command line

    Returns:
        Tokens with their quote characters preserved
    """
    tokens: list[str] = []
    current: list[str] = []
    state = QuoteState.UNQUOTED

    for char in command:
        next_state = QUOTE_TRANSITIONS.get((state, char))
        if next_state is not None:
            state = next_state
            current.append(char)
        elif state is QuoteState.UNQUOTED and char.isspace():
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)

    if current:
        tokens.append("".join(current))
    return tokens


def unquote(token: str) -> str:
    """Remove the quote characters that delimit segments of a token.

    Adjacent segments are concatenated (``'a'"b"`` becomes ``ab``) and an
    unterminated opening quote is dropped.
    """
    result: list[str] = []
    state = QuoteState.UNQUOTED
    for char in token:
        next_state = QUOTE_TRANSITIONS.get((state, char))
        if next_state is not None:
            state = next_state
            continue
        result.append(char)
    return "".join(result)


def has_open_quote(text: str) -> bool:
    """Return True when text ends inside a quoted segment."""
    state = QuoteState.UNQUOTED
    for char in text:
        state = QUOTE_TRANSITIONS.get((state, char), state)
    return state is not QuoteState.UNQUOTED


def shell_quote(text: str) -> str:
    """Single-quote text so that :func:`lex` keeps it as one token."""
    return "'" + text.replace("'", "'\"'\"'") + "'"


def join_continuations(text: str) -> str:
    """Join physical lines ending in a backslash into one logical line."""
    return _CONTINUATION.sub(" ", text)


def parse_body(data: str) -> Any:
    """Parse JSON object or array data, falling back to the raw string."""
    try:
        parsed = json.loads(data)
    except ValueError:
        return data
    if isinstance(parsed, (dict, list)):
        return parsed
    return data


class CurlTokenizer:
    """Tokenizer turning a raw curl command into a :class:`CurlInvocation`."""

    def scan(self, raw: str) -> TokenScan:
        """Run both phases and return whatever could be recognised.

        Args:
            raw: One logical curl command

        Returns:
            TokenScan, possibly without a URL
        """
        tokens = lex(join_continuations(raw).strip())
        scan = TokenScan(tokens=tokens)

        index = 0
        while index < len(tokens):
            value = unquote(tokens[index])
            following = unquote(tokens[index + 1]) if index + 1 < len(tokens) else None

            if value in METHOD_FLAGS and following is not None:
                if following.upper() in HTTP_METHODS:
                    scan.method = following.upper()
                    index += 2
                    continue
            elif value in HEADER_FLAGS and following is not None:
                key, separator, header_value = following.partition(":")
                if separator and key.strip():
                    scan.headers[key.strip()] = header_value.strip()
                index += 2
                continue
            elif value in DATA_FLAGS and following is not None:
                scan.body = parse_body(following)
                scan.has_body = True
                index += 2
                continue
            elif scan.url is None and value.startswith(URL_PREFIXES):
                scan.url = value

            index += 1

        return scan

    def tokenize(
        self,
        raw: str,
        line_number: int = 1,
        context: InvocationContext | None = None,
    ) -> CurlInvocation | None:
        """Tokenize a curl command.

        Args:
            raw: One logical curl command
            line_number: Source line of the command
            context: Surrounding document context

        Returns:
            CurlInvocation, or None when no URL token was found
        """
        scan = self.scan(raw)
        if scan.url is None:
            logger.debug("curl_command_without_url", line_number=line_number)
            return None

        return CurlInvocation(
            raw=raw.strip(),
            method=scan.resolved_method,
            url=scan.url,
            headers=scan.headers,
            body=scan.body,
            line_number=line_number,
            context=context or InvocationContext(),
        )
