"""Shared data model for curlspec.

These Pydantic models are the schema every external model payload is
validated against, and the result types handed to downstream consumers
(code generators, CLI front ends). Field names are snake_case in Python
and camelCase on the wire (``baseUrl``, ``commonHeaders``, ...).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

HTTP_METHODS: frozenset[str] = frozenset(
    {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}
)


class WireModel(BaseModel):
    """Base model accepting both snake_case names and camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump to a JSON-compatible dict using camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ParameterType(str, Enum):
    """Value type of an API parameter."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


class ParameterLocation(str, Enum):
    """Where an API parameter travels in the request."""

    QUERY = "query"
    HEADER = "header"
    BODY = "body"
    PATH = "path"


class AuthType(str, Enum):
    """Authentication scheme detected for an API collection."""

    BEARER = "bearer"
    BASIC = "basic"
    APIKEY = "apikey"


class ProvenanceStrategy(str, Enum):
    """Which path produced a single API specification.

    Values:
        DOCUMENT: Whole-document model extraction
        COMMAND: Per-command model analysis
        TOKENIZER: Deterministic tokenizer only (model unavailable)
    """

    DOCUMENT = "document"
    COMMAND = "command"
    TOKENIZER = "tokenizer"


class ExtractionStrategy(str, Enum):
    """Which strategy produced the returned extraction result."""

    DOCUMENT = "document"
    FALLBACK = "fallback"


class Parameter(WireModel):
    """A single API parameter.

    Attributes:
        name: Parameter name
        type: Value type
        required: Whether the parameter must be supplied
        location: Where the parameter is sent
        description: Optional human-readable description
        example: Optional example value
    """

    name: str
    type: ParameterType
    required: bool
    location: ParameterLocation
    description: str | None = None
    example: Any = None

    @field_validator("type", "location", mode="before")
    @classmethod
    def lowercase_enum(cls, v: Any) -> Any:
        """Accept enum values regardless of case."""
        if isinstance(v, str):
            return v.strip().lower()
        return v


class APIExample(WireModel):
    """An example request/response pair attached to a specification."""

    name: str | None = None
    description: str | None = None
    request: Any = None
    response: Any = None


class Provenance(WireModel):
    """Origin and confidence of one API specification."""

    strategy: ProvenanceStrategy
    confidence: float = Field(ge=0.0, le=1.0)


class APISpecification(WireModel):
    """Structured specification of one API endpoint.

    Attributes:
        name: Descriptive endpoint name
        description: Optional endpoint description
        method: HTTP method, upper-cased
        url: Full request URL
        headers: Request headers
        body: Request body, either raw text or parsed JSON
        parameters: Inferred parameters
        examples: Optional usage examples
        curl_command: The curl command the specification was derived from
        provenance: Strategy and confidence that produced this specification
    """

    name: str
    description: str | None = None
    method: str
    url: str
    headers: dict[str, str] | None = None
    body: Any = None
    parameters: list[Parameter] = Field(default_factory=list)
    examples: list[APIExample] | None = None
    curl_command: str | None = None
    provenance: Provenance | None = None

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v: Any) -> Any:
        """Upper-case the HTTP method."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("headers", mode="before")
    @classmethod
    def stringify_headers(cls, v: Any) -> Any:
        """Coerce scalar header values to strings."""
        if isinstance(v, dict):
            return {
                str(key): value if isinstance(value, str) else str(value)
                for key, value in v.items()
                if isinstance(value, (str, int, float, bool))
            }
        return v

    @field_validator("parameters", mode="before")
    @classmethod
    def default_parameters(cls, v: Any) -> Any:
        """Treat a null parameter list as empty."""
        return [] if v is None else v


class Authentication(WireModel):
    """Authentication pattern shared by an API collection."""

    type: AuthType
    location: Literal["header", "query"] | None = None
    name: str | None = None


class CollectionMetadata(WireModel):
    """Collection-level metadata reconciled across all extracted APIs."""

    name: str
    description: str | None = None
    base_url: str | None = None
    authentication: Authentication | None = None
    common_headers: dict[str, str] | None = None


class ExtractionContext(WireModel):
    """Optional hints supplied by the caller (or inferred from the document).

    Attributes:
        base_url: Base URL of the API
        api_name: Name of the API collection
        common_headers: Headers shared by most commands
        expected_endpoints: Expected number of endpoints
    """

    base_url: str | None = None
    api_name: str | None = None
    common_headers: dict[str, str] | None = None
    expected_endpoints: int | None = Field(default=None, ge=0)


class DocumentExtraction(WireModel):
    """Schema of a whole-document extraction returned by the model service."""

    apis: list[APISpecification]
    metadata: CollectionMetadata
    confidence: float = Field(ge=0.0, le=1.0)
    warnings: list[str] = Field(default_factory=list)


class ExtractionOptions(WireModel):
    """Per-call overrides of the configured extraction defaults.

    Any field left as None falls back to the orchestrator's configuration.
    """

    use_optimization: bool | None = None
    confidence_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    max_retries: int | None = Field(default=None, ge=0, le=10)
    fallback_to_basic_parsing: bool | None = None
    max_concurrency: int | None = Field(default=None, ge=1, le=32)


class ProcessingStats(WireModel):
    """Per-command accounting of an extraction run.

    Invariant: successfully_parsed + failed_to_parse == total_curl_commands.
    """

    total_curl_commands: int = Field(default=0, ge=0)
    successfully_parsed: int = Field(default=0, ge=0)
    failed_to_parse: int = Field(default=0, ge=0)
    average_confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_partition(self) -> ProcessingStats:
        """Ensure parsed and failed counts partition the total."""
        if self.successfully_parsed + self.failed_to_parse != self.total_curl_commands:
            raise ValueError(
                "successfully_parsed + failed_to_parse must equal total_curl_commands"
            )
        return self


class APICollection(WireModel):
    """An accepted set of APIs, as consumed by code generators."""

    name: str
    description: str | None = None
    base_url: str | None = None
    authentication: Authentication | None = None
    common_headers: dict[str, str] | None = None
    apis: list[APISpecification] = Field(default_factory=list)


class ExtractionResult(WireModel):
    """Outcome of one extraction call.

    Attributes:
        success: Whether at least one API was accepted
        apis: Accepted API specifications
        metadata: Reconciled collection metadata
        confidence: Overall confidence in [0, 1]
        warnings: Non-fatal issues
        errors: Failures that were contained (e.g. model strategy errors)
        processing_stats: Per-command accounting
        strategy: Strategy whose result was returned
        processing_time_seconds: Wall-clock duration of the call
    """

    success: bool
    apis: list[APISpecification] = Field(default_factory=list)
    metadata: CollectionMetadata
    confidence: float = Field(ge=0.0, le=1.0)
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    processing_stats: ProcessingStats = Field(default_factory=ProcessingStats)
    strategy: ExtractionStrategy
    processing_time_seconds: float = Field(default=0.0, ge=0.0)

    def to_collection(self) -> APICollection:
        """Build the API collection handed to downstream generators."""
        return APICollection(
            name=self.metadata.name,
            description=self.metadata.description,
            base_url=self.metadata.base_url,
            authentication=self.metadata.authentication,
            common_headers=self.metadata.common_headers,
            apis=list(self.apis),
        )


class ValidationReport(WireModel):
    """Outcome of a validation check.

    Only ``errors`` make a report invalid; warnings and suggestions are
    advisory.
    """

    is_valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)

    def merge(self, other: ValidationReport, prefix: str = "") -> None:
        """Fold another report into this one, prefixing its messages."""
        self.errors.extend(f"{prefix}{message}" for message in other.errors)
        self.warnings.extend(f"{prefix}{message}" for message in other.warnings)
        self.suggestions.extend(f"{prefix}{message}" for message in other.suggestions)
        self.is_valid = not self.errors
