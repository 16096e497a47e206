"""Unit tests for per-command analysis and confidence scoring."""

from __future__ import annotations

import pytest

from conftest import FakeModelService, make_client, spec_payload
from curlspec.models import ParameterLocation, ParameterType, ProvenanceStrategy
from curlspec.orchestrator.analyzer import (
    CommandAnalyzer,
    ConfidenceWeights,
    ExtractedElements,
    analysis_warnings,
    endpoint_name,
    infer_parameters,
    infer_type,
    is_well_formed,
    score_confidence,
)
from curlspec.parser.tokenizer import CurlInvocation, InvocationContext

FULL_COMMAND = (
    "curl -X POST https://api.example.com/users "
    "-H 'Content-Type: application/json' "
    """-d '{"name": "Ada"}'"""
)
SIMPLE_COMMAND = "curl https://api.example.com/users"


class TestScoreConfidence:
    """Test the weighted completeness score."""

    def test_complete_command_scores_one(self) -> None:
        """Test that every element plus the bonus gives 1.0."""
        elements = ExtractedElements(
            method=True, url=True, headers=True, body=True, parameters=True
        )
        assert score_confidence(elements, FULL_COMMAND) == 1.0

    def test_partial_command(self) -> None:
        """Test that method and URL with the bonus give 55 of 105."""
        elements = ExtractedElements(method=True, url=True)
        assert score_confidence(elements, SIMPLE_COMMAND) == pytest.approx(55 / 105)

    def test_no_bonus_for_short_commands(self) -> None:
        """Test that short commands are scored out of 100."""
        elements = ExtractedElements(method=True, url=True)
        assert score_confidence(elements, "curl x") == pytest.approx(0.5)

    def test_custom_weights(self) -> None:
        """Test that weights are configurable."""
        weights = ConfidenceWeights(
            method=0, url=100, headers=0, body=0, parameters=0, well_formed_bonus=0
        )
        assert score_confidence(ExtractedElements(url=True), SIMPLE_COMMAND, weights) == 1.0

    def test_zero_weights(self) -> None:
        """Test that an all-zero weighting scores 0."""
        weights = ConfidenceWeights(
            method=0, url=0, headers=0, body=0, parameters=0, well_formed_bonus=0
        )
        assert score_confidence(ExtractedElements(url=True), SIMPLE_COMMAND, weights) == 0.0

    def test_well_formed(self) -> None:
        """Test the well-formed bonus condition."""
        assert is_well_formed(SIMPLE_COMMAND) is True
        assert is_well_formed("curl a.io") is False
        assert is_well_formed("wget https://example.com") is False


class TestExtractedElements:
    """Test presence flag merging."""

    def test_or_merges_flags(self) -> None:
        """Test that either side's findings are kept."""
        merged = ExtractedElements(method=True, url=True) | ExtractedElements(
            headers=True, parameters=True
        )
        assert merged == ExtractedElements(
            method=True, url=True, headers=True, body=False, parameters=True
        )


class TestAnalysisWarnings:
    """Test warnings for missing elements."""

    def test_complete_command_has_no_warnings(self) -> None:
        """Test that a complete analysis produces no warnings."""
        elements = ExtractedElements(
            method=True, url=True, headers=True, body=True, parameters=True
        )
        assert analysis_warnings(elements, FULL_COMMAND) == []

    def test_missing_elements(self) -> None:
        """Test warnings for unparsed headers, body and parameters."""
        elements = ExtractedElements(method=True, url=True)
        warnings = analysis_warnings(elements, "curl -H 'x' -d 'y' https://api.example.com")

        assert "Headers were present but could not be parsed" in warnings
        assert "Request body was present but could not be parsed" in warnings
        assert "No parameters could be inferred from the curl command" in warnings

    def test_truncated_command(self) -> None:
        """Test warnings for a short command without a URL."""
        warnings = analysis_warnings(ExtractedElements(method=True), "curl localhost")

        assert "URL could not be extracted" in warnings
        assert "Curl command appears to be incomplete or truncated" in warnings
        assert "No HTTP URL found in curl command" in warnings


class TestInferParameters:
    """Test deterministic parameter inference."""

    def test_path_query_and_body(self) -> None:
        """Test inference from path placeholders, query keys and body keys."""
        parameters = infer_parameters(
            "https://a.io/users/{id}/posts/:post_id?limit=10&active=true&q=",
            {"title": "x", "count": 2, "tags": []},
        )

        by_name = {p.name: p for p in parameters}
        assert [p.name for p in parameters] == [
            "id", "post_id", "limit", "active", "q", "title", "count", "tags",
        ]
        assert by_name["id"].location is ParameterLocation.PATH
        assert by_name["id"].required is True
        assert by_name["limit"].location is ParameterLocation.QUERY
        assert by_name["limit"].required is False
        assert by_name["limit"].type is ParameterType.NUMBER
        assert by_name["active"].type is ParameterType.BOOLEAN
        assert by_name["q"].example is None
        assert by_name["title"].location is ParameterLocation.BODY
        assert by_name["title"].required is True
        assert by_name["count"].type is ParameterType.NUMBER
        assert by_name["tags"].type is ParameterType.ARRAY

    def test_no_duplicates(self) -> None:
        """Test that a name seen in the path is not repeated from the query."""
        parameters = infer_parameters("https://a.io/items/{id}?id=3", None)
        assert [(p.name, p.location) for p in parameters] == [("id", ParameterLocation.PATH)]

    def test_raw_body_yields_nothing(self) -> None:
        """Test that non-object bodies produce no body parameters."""
        assert infer_parameters("https://a.io/x", "a=1&b=2") == []
        assert infer_parameters(None, [1, 2]) == []

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (True, ParameterType.BOOLEAN),
            (3, ParameterType.NUMBER),
            (1.5, ParameterType.NUMBER),
            ({"a": 1}, ParameterType.OBJECT),
            ([1], ParameterType.ARRAY),
            ("FALSE", ParameterType.BOOLEAN),
            ("42", ParameterType.NUMBER),
            ("abc", ParameterType.STRING),
            (None, ParameterType.STRING),
        ],
    )
    def test_infer_type(self, value: object, expected: ParameterType) -> None:
        """Test value type inference."""
        assert infer_type(value) is expected


class TestEndpointName:
    """Test fallback endpoint naming."""

    def test_heading_wins(self) -> None:
        """Test that a heading names the endpoint."""
        assert endpoint_name("GET", "https://a.io/users", "List users") == "List users"

    def test_method_and_path(self) -> None:
        """Test naming after method and path."""
        assert endpoint_name("DELETE", "https://a.io/users/1") == "DELETE /users/1"
        assert endpoint_name("GET", "https://a.io") == "GET /"

    def test_unnamed(self) -> None:
        """Test naming without URL or heading."""
        assert endpoint_name("GET", None) == "Unnamed endpoint"


class TestCommandAnalyzer:
    """Test analysis with and without the model."""

    @pytest.mark.asyncio
    async def test_model_analysis(self) -> None:
        """Test that model output is authoritative and flags are merged."""
        service = FakeModelService(
            command=[
                spec_payload(
                    headers={"Accept": "application/json"},
                    parameters=[
                        {"name": "page", "type": "number", "required": False, "location": "query"}
                    ],
                )
            ]
        )
        analyzer = CommandAnalyzer(client=make_client(service))

        analysis = await analyzer.analyze(SIMPLE_COMMAND)

        assert analysis.degraded is False
        assert analysis.api_spec.name == "List users"
        assert analysis.api_spec.curl_command == SIMPLE_COMMAND
        assert analysis.extracted_elements.headers is True
        assert analysis.extracted_elements.body is False
        assert analysis.confidence == pytest.approx(90 / 105)
        assert analysis.api_spec.provenance is not None
        assert analysis.api_spec.provenance.strategy is ProvenanceStrategy.COMMAND
        assert analysis.api_spec.provenance.confidence == analysis.confidence

    @pytest.mark.asyncio
    async def test_without_client_degrades(self) -> None:
        """Test tokenizer-only analysis when no model client is configured."""
        analysis = await CommandAnalyzer().analyze(FULL_COMMAND, heading="Create user")

        assert analysis.degraded is True
        assert analysis.confidence == 1.0
        spec = analysis.api_spec
        assert spec.name == "Create user"
        assert spec.method == "POST"
        assert spec.url == "https://api.example.com/users"
        assert spec.headers == {"Content-Type": "application/json"}
        assert spec.body == {"name": "Ada"}
        assert [p.name for p in spec.parameters] == ["name"]
        assert spec.provenance is not None
        assert spec.provenance.strategy is ProvenanceStrategy.TOKENIZER
        assert analysis.warnings == [
            "Degraded analysis (tokenizer only): no model client configured"
        ]

    @pytest.mark.asyncio
    async def test_model_failure_degrades(self) -> None:
        """Test that a failing model call falls back to the tokenizer."""
        analyzer = CommandAnalyzer(client=make_client(FakeModelService()))

        analysis = await analyzer.analyze(SIMPLE_COMMAND)

        assert analysis.degraded is True
        assert analysis.confidence == pytest.approx(55 / 105)
        assert analysis.api_spec.name == "GET /users"
        assert analysis.warnings[-1].startswith("Degraded analysis (tokenizer only): ")

    @pytest.mark.asyncio
    async def test_unexpected_error_degrades(self) -> None:
        """Test that analyze never raises, even on programming errors."""
        service = FakeModelService(command=[RuntimeError("bug")])
        analyzer = CommandAnalyzer(client=make_client(service))

        analysis = await analyzer.analyze(SIMPLE_COMMAND)

        assert analysis.degraded is True
        assert "unexpected error: bug" in analysis.warnings[-1]

    @pytest.mark.asyncio
    async def test_command_without_url(self) -> None:
        """Test that a command without URL is still analyzed."""
        analysis = await CommandAnalyzer().analyze("curl -X GET localhost")

        assert analysis.api_spec.url == ""
        assert analysis.api_spec.name == "Unnamed endpoint"
        assert analysis.confidence == pytest.approx(25 / 105)
        assert "URL could not be extracted" in analysis.warnings

    @pytest.mark.asyncio
    async def test_analyze_invocation_uses_heading(self) -> None:
        """Test that invocations are named after their heading."""
        invocation = CurlInvocation(
            raw=SIMPLE_COMMAND,
            url="https://api.example.com/users",
            context=InvocationContext(heading="List users"),
        )

        analysis = await CommandAnalyzer().analyze_invocation(invocation)

        assert analysis.api_spec.name == "List users"
