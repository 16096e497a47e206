"""Per-command analysis combining the tokenizer with model enrichment.

The tokenizer always runs. The model's specification, when available, is
authoritative content; presence flags are the OR of what either side
found. When the model call fails, analysis degrades to tokenizer-only
output with deterministic parameter inference. :meth:`CommandAnalyzer.analyze`
never raises.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qsl, urlsplit

import structlog
from pydantic import BaseModel, Field

from curlspec.errors import CircuitOpenError, ModelError
from curlspec.intelligence.client import ResilientModelClient
from curlspec.models import (
    APISpecification,
    ExtractionContext,
    Parameter,
    ParameterLocation,
    ParameterType,
    Provenance,
    ProvenanceStrategy,
)
from curlspec.parser.tokenizer import CurlInvocation, CurlTokenizer, TokenScan

logger = structlog.get_logger(__name__)

INCOMPLETE_COMMAND_LENGTH = 20
WELL_FORMED_MIN_LENGTH = 10


class ConfidenceWeights(BaseModel):
    """Points awarded per extracted element.

    The well-formed bonus is added to both the score and the maximum, so a
    complete, well-formed command scores 105/105.
    """

    method: float = Field(default=20, ge=0)
    url: float = Field(default=30, ge=0)
    headers: float = Field(default=20, ge=0)
    body: float = Field(default=15, ge=0)
    parameters: float = Field(default=15, ge=0)
    well_formed_bonus: float = Field(default=5, ge=0)


class ExtractedElements(BaseModel):
    """Which parts of a request were recovered."""

    method: bool = False
    url: bool = False
    headers: bool = False
    body: bool = False
    parameters: bool = False

    def __or__(self, other: ExtractedElements) -> ExtractedElements:
        return ExtractedElements(
            method=self.method or other.method,
            url=self.url or other.url,
            headers=self.headers or other.headers,
            body=self.body or other.body,
            parameters=self.parameters or other.parameters,
        )


class CommandAnalysis(BaseModel):
    """Outcome of analyzing one curl command.

    Attributes:
        api_spec: Resulting specification
        confidence: Completeness score in [0, 1]
        warnings: Missing elements and other issues
        extracted_elements: Presence flags behind the score
        degraded: True when the model was unavailable
    """

    api_spec: APISpecification
    confidence: float = Field(ge=0.0, le=1.0)
    warnings: list[str] = Field(default_factory=list)
    extracted_elements: ExtractedElements
    degraded: bool = False


def is_well_formed(raw: str) -> bool:
    """Whether a command earns the well-formed bonus."""
    return "curl" in raw and len(raw) > WELL_FORMED_MIN_LENGTH


def score_confidence(
    elements: ExtractedElements, raw: str, weights: ConfidenceWeights | None = None
) -> float:
    """Weighted completeness score normalized to the achievable maximum.

    Args:
        elements: Presence flags
        raw: The analyzed command
        weights: Point weights (defaults when omitted)

    Returns:
        Score clamped to [0, 1]
    """
    weights = weights or ConfidenceWeights()
    score = 0.0
    maximum = 0.0
    for name in ("method", "url", "headers", "body", "parameters"):
        points = getattr(weights, name)
        maximum += points
        if getattr(elements, name):
            score += points

    if is_well_formed(raw):
        score += weights.well_formed_bonus
        maximum += weights.well_formed_bonus

    if maximum <= 0:
        return 0.0
    return max(0.0, min(1.0, score / maximum))


def analysis_warnings(elements: ExtractedElements, raw: str) -> list[str]:
    """Warnings for missing elements and suspicious commands."""
    warnings: list[str] = []
    if not elements.method:
        warnings.append("HTTP method could not be determined")
    if not elements.url:
        warnings.append("URL could not be extracted")
    if not elements.headers and "-H" in raw:
        warnings.append("Headers were present but could not be parsed")
    if not elements.body and ("-d" in raw or "--data" in raw):
        warnings.append("Request body was present but could not be parsed")
    if not elements.parameters:
        warnings.append("No parameters could be inferred from the curl command")
    if len(raw) < INCOMPLETE_COMMAND_LENGTH:
        warnings.append("Curl command appears to be incomplete or truncated")
    if "http" not in raw:
        warnings.append("No HTTP URL found in curl command")
    return warnings


def infer_type(value: Any) -> ParameterType:
    """Map an example value onto a parameter type."""
    if isinstance(value, bool):
        return ParameterType.BOOLEAN
    if isinstance(value, (int, float)):
        return ParameterType.NUMBER
    if isinstance(value, dict):
        return ParameterType.OBJECT
    if isinstance(value, list):
        return ParameterType.ARRAY
    if isinstance(value, str):
        if value.lower() in ("true", "false"):
            return ParameterType.BOOLEAN
        try:
            float(value)
        except ValueError:
            return ParameterType.STRING
        return ParameterType.NUMBER
    return ParameterType.STRING


def infer_parameters(url: str | None, body: Any = None) -> list[Parameter]:
    """Infer parameters deterministically from a URL and request body.

    - ``{name}`` and ``:name`` path segments become required path parameters
    - query-string keys become optional query parameters
    - top-level keys of a JSON object body become required body parameters

    Args:
        url: Request URL, if any
        body: Parsed request body

    Returns:
        Parameters without duplicate names, in that order
    """
    parameters: list[Parameter] = []
    seen: set[str] = set()

    def add(name: str, **fields: Any) -> None:
        if name and name not in seen:
            seen.add(name)
            parameters.append(Parameter(name=name, **fields))

    if url:
        parts = urlsplit(url)
        for segment in parts.path.split("/"):
            if segment.startswith("{") and segment.endswith("}"):
                name = segment[1:-1]
            elif segment.startswith(":"):
                name = segment[1:]
            else:
                continue
            add(
                name,
                type=ParameterType.STRING,
                required=True,
                location=ParameterLocation.PATH,
            )
        for key, value in parse_qsl(parts.query, keep_blank_values=True):
            add(
                key,
                type=infer_type(value),
                required=False,
                location=ParameterLocation.QUERY,
                example=value or None,
            )

    if isinstance(body, dict):
        for key, value in body.items():
            add(
                str(key),
                type=infer_type(value),
                required=True,
                location=ParameterLocation.BODY,
                example=value,
            )

    return parameters


def endpoint_name(method: str, url: str | None, heading: str | None = None) -> str:
    """Name an endpoint after its heading, or its method and path."""
    if heading:
        return heading
    if url:
        path = urlsplit(url).path or "/"
        return f"{method} {path}"
    return "Unnamed endpoint"


def tokenizer_elements(scan: TokenScan, parameters: list[Parameter]) -> ExtractedElements:
    """Presence flags for what the tokenizer recovered."""
    return ExtractedElements(
        method=bool(scan.resolved_method),
        url=scan.url is not None,
        headers=bool(scan.headers),
        body=scan.has_body,
        parameters=bool(parameters),
    )


def model_elements(spec: APISpecification) -> ExtractedElements:
    """Presence flags for what the model returned."""
    return ExtractedElements(
        method=bool(spec.method),
        url=bool(spec.url),
        headers=bool(spec.headers),
        body=spec.body is not None and spec.body != "",
        parameters=bool(spec.parameters),
    )


class CommandAnalyzer:
    """Analyzes single curl commands.

    Args:
        client: Resilient model client; None analyzes with the tokenizer only
        tokenizer: Curl tokenizer (a default instance when omitted)
        weights: Confidence weights (defaults when omitted)
    """

    def __init__(
        self,
        client: ResilientModelClient | None = None,
        tokenizer: CurlTokenizer | None = None,
        weights: ConfidenceWeights | None = None,
    ) -> None:
        self._client = client
        self._tokenizer = tokenizer or CurlTokenizer()
        self._weights = weights or ConfidenceWeights()

    async def analyze(
        self,
        raw: str,
        context: ExtractionContext | None = None,
        heading: str | None = None,
    ) -> CommandAnalysis:
        """Analyze one curl command.

        Args:
            raw: Logical curl command
            context: Extraction hints passed to the model
            heading: Document heading above the command, used for naming

        Returns:
            CommandAnalysis; degraded to tokenizer-only when the model fails
        """
        scan = self._tokenizer.scan(raw)
        inferred = infer_parameters(scan.url, scan.body)
        found = tokenizer_elements(scan, inferred)

        degraded_reason: str | None = None
        if self._client is None:
            degraded_reason = "no model client configured"
        else:
            try:
                spec = await self._client.analyze_command(raw, context)
            except (ModelError, CircuitOpenError) as e:
                degraded_reason = str(e)
            except Exception as e:
                logger.exception("command_analysis_error", error=str(e))
                degraded_reason = f"unexpected error: {e}"
            else:
                elements = found | model_elements(spec)
                confidence = score_confidence(elements, raw, self._weights)
                spec = spec.model_copy(
                    update={
                        "provenance": Provenance(
                            strategy=ProvenanceStrategy.COMMAND,
                            confidence=confidence,
                        )
                    }
                )
                logger.debug(
                    "command_analyzed",
                    name=spec.name,
                    confidence=confidence,
                )
                return CommandAnalysis(
                    api_spec=spec,
                    confidence=confidence,
                    warnings=analysis_warnings(elements, raw),
                    extracted_elements=elements,
                )

        logger.warning(
            "command_analysis_degraded",
            reason=degraded_reason,
            has_url=scan.url is not None,
        )
        confidence = score_confidence(found, raw, self._weights)
        spec = APISpecification(
            name=endpoint_name(scan.resolved_method, scan.url, heading),
            method=scan.resolved_method,
            url=scan.url or "",
            headers=scan.headers or None,
            body=scan.body,
            parameters=inferred,
            curl_command=raw,
            provenance=Provenance(
                strategy=ProvenanceStrategy.TOKENIZER,
                confidence=confidence,
            ),
        )
        warnings = analysis_warnings(found, raw)
        warnings.append(f"Degraded analysis (tokenizer only): {degraded_reason}")
        return CommandAnalysis(
            api_spec=spec,
            confidence=confidence,
            warnings=warnings,
            extracted_elements=found,
            degraded=True,
        )

    async def analyze_invocation(
        self, invocation: CurlInvocation, context: ExtractionContext | None = None
    ) -> CommandAnalysis:
        """Analyze a tokenized invocation, naming it after its heading."""
        return await self.analyze(
            invocation.raw, context, heading=invocation.context.heading
        )
