"""Collection metadata reconciliation and extraction context inference."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from urllib.parse import urlsplit

from curlspec.models import (
    APISpecification,
    Authentication,
    AuthType,
    CollectionMetadata,
    ExtractionContext,
)
from curlspec.parser.structure import MarkdownDocument
from curlspec.parser.tokenizer import CurlInvocation

DEFAULT_COLLECTION_NAME = "Generated API Collection"
EMPTY_COLLECTION_NAME = "Empty API Collection"

AUTH_HEADER_HINTS = ("authorization", "auth", "api-key", "apikey", "token")


def url_origin(url: str | None) -> str | None:
    """Return ``scheme://host[:port]`` of an http(s) URL, or None."""
    if not url:
        return None
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def common_origin(urls: Iterable[str]) -> str | None:
    """Origin shared by every URL, or None when they differ or none parse."""
    origins = {url_origin(url) for url in urls}
    if len(origins) != 1:
        return None
    return origins.pop()


def common_headers(header_maps: Sequence[dict[str, str] | None]) -> dict[str, str]:
    """Headers present in more than half of the given header maps.

    Keys compare case-insensitively and values exactly. The casing of the
    first occurrence is kept.

    Args:
        header_maps: One header map per API (None for no headers)

    Returns:
        Common headers in first-seen order
    """
    total = len(header_maps)
    counts: Counter[tuple[str, str]] = Counter()
    first_key: dict[tuple[str, str], str] = {}

    for headers in header_maps:
        seen: set[tuple[str, str]] = set()
        for key, value in (headers or {}).items():
            pair = (key.lower(), value)
            if pair in seen:
                continue
            seen.add(pair)
            counts[pair] += 1
            first_key.setdefault(pair, key)

    return {
        first_key[pair]: pair[1]
        for pair in first_key
        if counts[pair] * 2 > total
    }


def is_auth_header(key: str) -> bool:
    """Whether a header name looks like it carries credentials."""
    lowered = key.lower()
    return any(hint in lowered for hint in AUTH_HEADER_HINTS)


def classify_auth(key: str, value: str) -> Authentication:
    """Classify a credential header by its value prefix."""
    lowered = value.strip().lower()
    if lowered.startswith("bearer"):
        auth_type = AuthType.BEARER
    elif lowered.startswith("basic"):
        auth_type = AuthType.BASIC
    else:
        auth_type = AuthType.APIKEY
    return Authentication(type=auth_type, location="header", name=key)


def detect_authentication(apis: Sequence[APISpecification]) -> Authentication | None:
    """Authentication inferred from the first credential-like header."""
    for api in apis:
        for key, value in (api.headers or {}).items():
            if is_auth_header(key):
                return classify_auth(key, value)
    return None


def reconcile_metadata(
    apis: Sequence[APISpecification],
    context: ExtractionContext | None = None,
    reported: CollectionMetadata | None = None,
) -> CollectionMetadata:
    """Compute collection metadata for a set of APIs.

    Caller context wins, then values computed from the APIs, then values
    the model reported.

    Args:
        apis: Accepted API specifications
        context: Caller-supplied or inferred hints
        reported: Metadata returned by the document strategy, if any

    Returns:
        CollectionMetadata
    """
    context = context or ExtractionContext()

    if not apis:
        return CollectionMetadata(
            name=context.api_name or (reported.name if reported else EMPTY_COLLECTION_NAME),
            description="No APIs were successfully extracted",
            base_url=context.base_url,
        )

    base_url = (
        context.base_url
        or common_origin(api.url for api in apis)
        or (reported.base_url if reported else None)
    )

    headers: dict[str, str] = {}
    if len(apis) > 1:
        headers = common_headers([api.headers for api in apis])
    if not headers and reported and reported.common_headers:
        headers = dict(reported.common_headers)

    authentication = detect_authentication(apis) or (
        reported.authentication if reported else None
    )

    count = len(apis)
    description = f"API collection with {count} endpoint{'' if count == 1 else 's'}"
    if reported and reported.description:
        description = reported.description

    return CollectionMetadata(
        name=context.api_name or (reported.name if reported else DEFAULT_COLLECTION_NAME),
        description=description,
        base_url=base_url,
        authentication=authentication,
        common_headers=headers or None,
    )


def infer_context(
    markdown: str,
    document: MarkdownDocument,
    invocations: Sequence[CurlInvocation],
    supplied: ExtractionContext | None = None,
) -> ExtractionContext:
    """Fill missing context fields from the document.

    - api_name: first level-1 heading
    - base_url: origin of the first curl URL
    - expected_endpoints: raw count of ``curl`` occurrences
    - common_headers: ``-H`` values repeated across commands

    Fields the caller supplied are never overwritten.

    Args:
        markdown: Raw markdown source
        document: Parsed structure of the source
        invocations: Tokenized curl commands in document order
        supplied: Caller hints

    Returns:
        A new ExtractionContext
    """
    supplied = supplied or ExtractionContext()

    base_url = supplied.base_url
    if base_url is None and invocations:
        base_url = url_origin(invocations[0].url)

    headers = supplied.common_headers
    if headers is None and len(invocations) > 1:
        counts: Counter[tuple[str, str]] = Counter()
        for invocation in invocations:
            counts.update(set(invocation.headers.items()))
        repeated = {key: value for (key, value), n in counts.items() if n > 1}
        headers = repeated or None

    expected = supplied.expected_endpoints
    if expected is None:
        expected = markdown.count("curl")

    return ExtractionContext(
        base_url=base_url,
        api_name=supplied.api_name or document.title,
        common_headers=headers,
        expected_endpoints=expected,
    )
