"""Validation of API specifications, collections, documents and results.

Only four conditions are hard errors that make a report invalid: an empty
API name, an empty or invalid URL, an unknown HTTP method, and an empty
collection. Every other check produces warnings or suggestions.
"""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Sequence
from urllib.parse import urlsplit

import structlog

from curlspec.models import (
    HTTP_METHODS,
    APICollection,
    APISpecification,
    ExtractionResult,
    ParameterLocation,
    ParameterType,
    ValidationReport,
)
from curlspec.parser.commands import split_block_commands
from curlspec.parser.structure import StructureParser
from curlspec.parser.tokenizer import CurlInvocation, CurlTokenizer

logger = structlog.get_logger(__name__)

BODY_EXPECTED_HEADERS = {
    "POST": "content-type",
    "PUT": "content-type",
    "PATCH": "content-type",
}
BODYLESS_METHODS = frozenset({"GET", "DELETE"})
MIN_RESULT_CONFIDENCE = 0.5


def is_valid_url(url: str | None) -> bool:
    """Whether a URL has an http(s) scheme and a host."""
    if not url:
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def under_base_url(url: str, base_url: str) -> bool:
    """Whether ``url`` is ``base_url`` itself or a path, query or fragment below it."""
    base = base_url.rstrip("/")
    if not url.startswith(base):
        return False
    rest = url[len(base) :]
    return not rest or rest[0] in "/?#"


def _looks_like_json(text: str) -> bool:
    stripped = text.strip()
    return (stripped.startswith("{") and stripped.endswith("}")) or (
        stripped.startswith("[") and stripped.endswith("]")
    )


def _has_path_placeholder(url: str, name: str) -> bool:
    if f"{{{name}}}" in url:
        return True
    return f":{name}" in urlsplit(url).path.split("/")


def _auth_header(spec: APISpecification) -> str | None:
    for key in spec.headers or {}:
        lowered = key.lower()
        if "auth" in lowered or "token" in lowered or "api-key" in lowered:
            return key
    return None


class SpecValidator:
    """Validates specifications and the inputs/outputs around them.

    Args:
        parser: Structure parser used by :meth:`validate_markdown`
        tokenizer: Curl tokenizer used by :meth:`validate_markdown`
    """

    def __init__(
        self,
        parser: StructureParser | None = None,
        tokenizer: CurlTokenizer | None = None,
    ) -> None:
        self._parser = parser or StructureParser()
        self._tokenizer = tokenizer or CurlTokenizer()

    def validate_spec(self, spec: APISpecification) -> ValidationReport:
        """Validate one API specification.

        Args:
            spec: Specification to check

        Returns:
            ValidationReport; invalid on empty name, bad URL or unknown method
        """
        report = ValidationReport()

        if not spec.name or not spec.name.strip():
            report.errors.append("API name is empty")
        if not spec.url:
            report.errors.append("URL is empty")
        elif not is_valid_url(spec.url):
            report.errors.append(
                f"Invalid URL: {spec.url} (expected an http:// or https:// URL with a host)"
            )
        if spec.method not in HTTP_METHODS:
            report.errors.append(f"Invalid HTTP method: {spec.method}")

        self._check_method_requirements(spec, report)
        self._check_headers(spec, report)
        self._check_body(spec, report)
        self._check_parameters(spec, report)

        if not spec.description:
            report.suggestions.append(
                "Add a description explaining what this endpoint does"
            )
        if spec.parameters and any(not p.description for p in spec.parameters):
            report.suggestions.append("Add descriptions to all parameters")

        report.is_valid = not report.errors
        return report

    def _check_method_requirements(
        self, spec: APISpecification, report: ValidationReport
    ) -> None:
        header_keys = {key.lower() for key in spec.headers or {}}
        expected = BODY_EXPECTED_HEADERS.get(spec.method)
        if expected and expected not in header_keys:
            report.warnings.append(
                f"Missing recommended header '{expected}' for {spec.method} request"
            )
        if spec.method in BODYLESS_METHODS and spec.body not in (None, ""):
            report.warnings.append(
                f"{spec.method} requests typically should not have a body"
            )
        if spec.method in ("POST", "PUT") and spec.body in (None, ""):
            report.warnings.append(
                f"{spec.method} requests typically require a request body"
            )

    def _check_headers(self, spec: APISpecification, report: ValidationReport) -> None:
        for key, value in (spec.headers or {}).items():
            lowered = key.lower()
            if not value.strip():
                report.warnings.append(f"Empty value for header '{key}'")
            if "_" in key:
                report.suggestions.append(
                    f"Consider kebab-case for header '{key}' ('{key.replace('_', '-')}')"
                )
            if lowered == "authorization" and not value.lower().startswith(
                ("bearer ", "basic ")
            ):
                report.warnings.append(
                    "Authorization header may be missing its scheme (Bearer or Basic)"
                )
            if (
                lowered == "content-type"
                and isinstance(spec.body, (dict, list))
                and "json" not in value.lower()
            ):
                report.warnings.append("Content-Type may not match the JSON request body")

    def _check_body(self, spec: APISpecification, report: ValidationReport) -> None:
        if not isinstance(spec.body, str) or not _looks_like_json(spec.body):
            return
        try:
            json.loads(spec.body)
        except ValueError:
            report.warnings.append("Request body appears to be malformed JSON")
        else:
            report.suggestions.append(
                "Request body is a JSON string; consider storing it as an object"
            )

    def _check_parameters(self, spec: APISpecification, report: ValidationReport) -> None:
        counts = Counter(p.name for p in spec.parameters)
        for name, count in counts.items():
            if count > 1:
                report.warnings.append(f"Duplicate parameter name '{name}'")

        for parameter in spec.parameters:
            if parameter.location is ParameterLocation.PATH and not _has_path_placeholder(
                spec.url, parameter.name
            ):
                report.warnings.append(
                    f"Path parameter '{parameter.name}' has no "
                    f"{{{parameter.name}}} placeholder in the URL"
                )
            if parameter.required and parameter.example is None and not parameter.description:
                report.warnings.append(
                    f"Required parameter '{parameter.name}' lacks description or example"
                )
            if (
                parameter.type is ParameterType.ARRAY
                and parameter.example is not None
                and not isinstance(parameter.example, list)
            ):
                report.warnings.append(
                    f"Parameter '{parameter.name}' is an array but its example is not"
                )

    def validate_collection(self, collection: APICollection) -> ValidationReport:
        """Validate a collection and each of its specifications.

        Args:
            collection: Collection to check

        Returns:
            ValidationReport; per-API messages are prefixed with the API index
        """
        logger.info(
            "validating_collection", name=collection.name, apis=len(collection.apis)
        )
        report = ValidationReport()

        if not collection.apis:
            report.errors.append("API collection contains no APIs")

        for index, spec in enumerate(collection.apis, start=1):
            report.merge(self.validate_spec(spec), prefix=f"API {index} ({spec.name}): ")

        names = Counter(spec.name for spec in collection.apis)
        for name, count in names.items():
            if count > 1:
                report.warnings.append(f"Duplicate API name '{name}'")

        if collection.base_url:
            outside = [
                spec
                for spec in collection.apis
                if not under_base_url(spec.url, collection.base_url)
            ]
            if outside:
                report.warnings.append(
                    f"{len(outside)} APIs don't use the collection base URL"
                )

        with_auth = [spec for spec in collection.apis if _auth_header(spec)]
        if with_auth and len(with_auth) < len(collection.apis):
            report.warnings.append("Inconsistent authentication patterns across APIs")

        if not collection.description:
            report.suggestions.append("Add a description of this API collection")

        report.is_valid = not report.errors
        return report

    def validate_markdown(self, markdown: str) -> ValidationReport:
        """Check that markdown is usable as an API document.

        Args:
            markdown: Raw markdown source

        Returns:
            ValidationReport; missing code blocks or curl blocks are errors
        """
        report = ValidationReport()
        document = self._parser.parse(markdown)

        if not document.headings:
            report.warnings.append("No headings found in markdown file")
        if not document.code_blocks:
            report.errors.append("No code blocks found in markdown file")
        if not document.curl_blocks:
            report.errors.append("No curl commands found in code blocks")

        for block in document.curl_blocks:
            commands = split_block_commands(block.content)
            parsed = [c for c in commands if self._tokenizer.tokenize(c.raw)]
            if not parsed:
                report.warnings.append(
                    f"Invalid curl command in code block at line {block.line_number}"
                )

        if any(block.language is None for block in document.code_blocks):
            report.suggestions.append("Tag code blocks with a language such as bash")
        if document.headings and document.curl_blocks:
            report.suggestions.append(
                "Consider organizing curl commands under descriptive headings"
            )

        report.is_valid = not report.errors
        return report

    def validate_invocations(
        self, invocations: Sequence[CurlInvocation]
    ) -> ValidationReport:
        """Check tokenized curl commands for completeness."""
        report = ValidationReport()
        for index, invocation in enumerate(invocations, start=1):
            where = f"Curl command {index} (line {invocation.line_number})"
            if not is_valid_url(invocation.url):
                report.errors.append(f"{where}: invalid URL {invocation.url}")
            if "curl" not in invocation.raw:
                report.errors.append(f"{where}: does not appear to be a curl command")
            for key, value in invocation.headers.items():
                if not value.strip():
                    report.warnings.append(f"{where}: empty value for header '{key}'")
            if not invocation.context.heading:
                report.warnings.append(f"{where}: no associated heading")
        report.is_valid = not report.errors
        return report

    def validate_result(self, result: ExtractionResult) -> ValidationReport:
        """Check an extraction result before handing it downstream."""
        report = ValidationReport()
        if not result.success:
            report.errors.append("Extraction was not successful")
        if not result.apis:
            report.errors.append("No APIs were extracted")
        if result.confidence < MIN_RESULT_CONFIDENCE:
            report.warnings.append(
                f"Overall confidence is below {MIN_RESULT_CONFIDENCE:.0%}"
            )

        for index, spec in enumerate(result.apis, start=1):
            if not spec.name.strip():
                report.errors.append(f"API {index}: missing or empty name")
            if spec.method not in HTTP_METHODS:
                report.errors.append(f"API {index}: invalid or missing HTTP method")
            if not is_valid_url(spec.url):
                report.errors.append(f"API {index}: invalid or missing URL")

        report.is_valid = not report.errors
        return report
