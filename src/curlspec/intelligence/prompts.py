"""Prompt construction for the three model operations.

Each builder returns a chat message list (system + user). The user prompt
always ends with the JSON shape the response is validated against.
"""

from __future__ import annotations

import json
from typing import Any

from curlspec.models import APISpecification, ExtractionContext

DOCUMENT_SYSTEM_PROMPT = """\
You are an expert API analyst. Your task is to read markdown documentation \
containing curl commands and extract structured API specifications.

Key responsibilities:
- Parse curl commands accurately: HTTP method, URL, headers and body
- Infer parameter types and requirements from the examples
- Name and describe each endpoint from the surrounding documentation
- Identify authentication patterns and headers shared across endpoints
- Report a confidence score and warnings for uncertain extractions

Respond with a single JSON object and nothing else."""

COMMAND_SYSTEM_PROMPT = """\
You are an expert at analyzing curl commands and extracting API \
specifications. Parse the curl command and return a structured API \
specification as a single JSON object. Focus on accuracy and completeness."""

OPTIMIZE_SYSTEM_PROMPT = """\
You are an expert at refining API specifications for code generation. \
Improve parameter descriptions, types and requirements without changing \
the method or URL. Return the refined specification as a single JSON object."""

SPEC_SCHEMA = """\
{
  "name": "string",
  "description": "string (optional)",
  "method": "string",
  "url": "string",
  "headers": "object of string values (optional)",
  "body": "any (optional)",
  "parameters": [
    {
      "name": "string",
      "type": "string | number | boolean | object | array",
      "required": "boolean",
      "location": "query | header | body | path",
      "description": "string (optional)",
      "example": "any (optional)"
    }
  ]
}"""

DOCUMENT_SCHEMA = """\
{
  "apis": [array of API specifications],
  "metadata": {
    "name": "string",
    "description": "string (optional)",
    "baseUrl": "string (optional)",
    "authentication": {"type": "bearer | basic | apikey", "location": "header | query", "name": "string"},
    "commonHeaders": "object (optional)"
  },
  "confidence": "number between 0 and 1",
  "warnings": ["string"]
}"""


def _context_lines(context: ExtractionContext | None) -> list[str]:
    if context is None:
        return []
    lines = [
        "Context information:",
        f"- Base URL: {context.base_url or 'Not specified'}",
        f"- API name: {context.api_name or 'Not specified'}",
    ]
    if context.expected_endpoints is not None:
        lines.append(f"- Expected endpoints: {context.expected_endpoints}")
    lines.append(f"- Common headers: {json.dumps(context.common_headers or {})}")
    return lines + [""]


def _messages(system: str, user: str) -> list[dict[str, Any]]:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def build_document_messages(
    markdown: str, context: ExtractionContext | None = None
) -> list[dict[str, Any]]:
    """Build the whole-document extraction prompt.

    Args:
        markdown: Preprocessed markdown
        context: Optional extraction hints

    Returns:
        Chat messages
    """
    user = "\n".join(
        [
            "Extract API specifications from the curl commands in this markdown.",
            "",
            *_context_lines(context),
            "Markdown content:",
            markdown,
            "",
            "Requirements:",
            "- Parse every curl command found in code blocks",
            "- Infer parameter types (string, number, boolean, object, array)",
            "- Identify parameter locations (query, header, body, path)",
            "- Flag incomplete or ambiguous information as warnings",
            "",
            "Each API specification has this shape:",
            SPEC_SCHEMA,
            "",
            "Return JSON matching this schema:",
            DOCUMENT_SCHEMA,
        ]
    )
    return _messages(DOCUMENT_SYSTEM_PROMPT, user)


def build_command_messages(
    raw_curl: str, context: ExtractionContext | None = None
) -> list[dict[str, Any]]:
    """Build the single-command analysis prompt."""
    user = "\n".join(
        [
            "Analyze this curl command and extract the API specification:",
            "",
            f"Curl command: {raw_curl}",
            "",
            *_context_lines(context),
            "Extract the method, URL, headers, authentication, body and parameters,",
            "and generate a descriptive name for the endpoint.",
            "",
            "Return JSON matching this schema:",
            SPEC_SCHEMA,
        ]
    )
    return _messages(COMMAND_SYSTEM_PROMPT, user)


def build_optimize_messages(
    spec: APISpecification, context: str | None = None
) -> list[dict[str, Any]]:
    """Build the specification optimization prompt."""
    payload = spec.model_dump(
        mode="json", by_alias=True, exclude_none=True, exclude={"provenance"}
    )
    lines = [
        "Refine this API specification:",
        "",
        json.dumps(payload, indent=2),
        "",
    ]
    if context:
        lines.extend([f"Additional context: {context}", ""])
    lines.extend(
        [
            "Improvements to make:",
            "- Clearer parameter descriptions",
            "- Missing parameter types or requirements",
            "- A descriptive endpoint name",
            "",
            "Return JSON matching this schema:",
            SPEC_SCHEMA,
        ]
    )
    return _messages(OPTIMIZE_SYSTEM_PROMPT, "\n".join(lines))
