"""Extraction orchestrator: document strategy, fallback and reconciliation.

Pipeline of one :meth:`ExtractionOrchestrator.extract` call:

1. Preflight validation (raises DocumentValidationError, no network call)
2. Command discovery and context inference
3. Document strategy: preprocess, extract the whole document through the
   resilient client with outer retries, optionally optimize each API
4. Fallback strategy: analyze every tokenized command, keep analyses at or
   above the confidence threshold
5. Reconciliation of collection metadata and processing statistics

Every input that passes preflight produces an ExtractionResult; strategy
failures are reported in ``errors``/``warnings`` instead of raised.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence

import structlog

from curlspec.config import ExtractionConfig
from curlspec.errors import CircuitOpenError, DocumentValidationError, ModelError
from curlspec.intelligence.client import ResilientModelClient
from curlspec.intelligence.resilience import Sleep
from curlspec.logging import (
    bind_extraction_context,
    clear_extraction_context,
    new_extraction_id,
)
from curlspec.models import (
    APISpecification,
    DocumentExtraction,
    ExtractionContext,
    ExtractionOptions,
    ExtractionResult,
    ExtractionStrategy,
    ProcessingStats,
    Provenance,
    ProvenanceStrategy,
)
from curlspec.orchestrator.analyzer import CommandAnalysis, CommandAnalyzer
from curlspec.orchestrator.metadata import infer_context, reconcile_metadata
from curlspec.parser.commands import CommandCandidate, CurlCommandFinder
from curlspec.parser.preprocessor import ContentPreprocessor
from curlspec.parser.structure import StructureParser
from curlspec.parser.tokenizer import CurlInvocation

logger = structlog.get_logger(__name__)

MAX_DOCUMENT_CHARACTERS = 100_000
LOW_CONFIDENCE_WARNING = (
    "No strategy reached the confidence threshold; "
    "returning the best low-confidence result"
)


def validate_document(markdown: str) -> None:
    """Preflight checks on raw markdown.

    Args:
        markdown: Raw markdown source

    Raises:
        DocumentValidationError: If the document is empty, too large, or
            contains no curl commands
    """
    if not markdown or not markdown.strip():
        raise DocumentValidationError("Markdown content is empty")
    if len(markdown) > MAX_DOCUMENT_CHARACTERS:
        raise DocumentValidationError(
            f"Markdown content is too large: {len(markdown)} characters "
            f"(maximum {MAX_DOCUMENT_CHARACTERS})"
        )
    if "curl" not in markdown:
        raise DocumentValidationError("No curl commands found in markdown content")


def _stats(
    total: int, successfully_parsed: int, average_confidence: float
) -> ProcessingStats:
    parsed = min(successfully_parsed, total)
    return ProcessingStats(
        total_curl_commands=total,
        successfully_parsed=parsed,
        failed_to_parse=total - parsed,
        average_confidence=max(0.0, min(1.0, average_confidence)),
    )


class ExtractionOrchestrator:
    """Top-level entry point turning markdown into an ExtractionResult.

    Args:
        client: Resilient model client; None runs the fallback strategy only
        config: Default extraction settings
        parser: Structure parser
        finder: Curl command finder
        preprocessor: Content preprocessor for the document strategy
        analyzer: Command analyzer for the fallback strategy
        sleep: Async sleep between document retries (injectable for tests)
    """

    def __init__(
        self,
        client: ResilientModelClient | None = None,
        config: ExtractionConfig | None = None,
        parser: StructureParser | None = None,
        finder: CurlCommandFinder | None = None,
        preprocessor: ContentPreprocessor | None = None,
        analyzer: CommandAnalyzer | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._config = config or ExtractionConfig()
        self._parser = parser or StructureParser()
        self._finder = finder or CurlCommandFinder(parser=self._parser)
        self._preprocessor = preprocessor or ContentPreprocessor(
            parser=self._parser, finder=self._finder
        )
        self._analyzer = analyzer or CommandAnalyzer(client=client)
        self._sleep = sleep

    def validate_document(self, markdown: str) -> None:
        """Run preflight validation; see :func:`validate_document`."""
        validate_document(markdown)

    async def extract(
        self,
        markdown: str,
        context: ExtractionContext | None = None,
        options: ExtractionOptions | None = None,
        document_name: str | None = None,
    ) -> ExtractionResult:
        """Extract API specifications from markdown.

        Args:
            markdown: Raw markdown source
            context: Optional hints; missing fields are inferred
            options: Per-call overrides of the configured settings
            document_name: Source name bound to log events

        Returns:
            ExtractionResult

        Raises:
            DocumentValidationError: If preflight validation fails
        """
        validate_document(markdown)
        settings = self._config.merged_with(options)

        extraction_id = new_extraction_id()
        bind_extraction_context(extraction_id, document=document_name)
        start = time.monotonic()
        try:
            result = await self._extract(markdown, context, settings)
        finally:
            clear_extraction_context()

        result.processing_time_seconds = time.monotonic() - start
        logger.info(
            "extraction_completed",
            extraction_id=extraction_id,
            success=result.success,
            strategy=result.strategy.value,
            apis=len(result.apis),
            confidence=result.confidence,
            duration_seconds=result.processing_time_seconds,
        )
        return result

    async def _extract(
        self,
        markdown: str,
        supplied: ExtractionContext | None,
        settings: ExtractionConfig,
    ) -> ExtractionResult:
        document = self._parser.parse(markdown)
        candidates = self._finder.find(markdown, document)
        invocations = self._tokenize(candidates)
        context = infer_context(markdown, document, invocations, supplied)
        threshold = settings.confidence_threshold

        logger.info(
            "extraction_started",
            characters=len(markdown),
            curl_commands=len(candidates),
            tokenized=len(invocations),
            threshold=threshold,
        )

        warnings: list[str] = []
        errors: list[str] = []

        document_result: ExtractionResult | None = None
        if self._client is None:
            warnings.append("No model client configured; document strategy skipped")
        else:
            document_result = await self._document_strategy(
                self._client, markdown, context, settings, len(candidates)
            )
            errors.extend(document_result.errors)
            if document_result.apis and document_result.confidence >= threshold:
                logger.info(
                    "document_strategy_accepted",
                    confidence=document_result.confidence,
                    apis=len(document_result.apis),
                )
                return document_result
            logger.info(
                "document_strategy_insufficient",
                confidence=document_result.confidence,
                apis=len(document_result.apis),
            )
            warnings.append(
                "Document extraction had low confidence, "
                "falling back to individual curl analysis"
            )

        fallback_result: ExtractionResult | None = None
        if settings.fallback_to_basic_parsing:
            fallback_result = await self._fallback_strategy(
                invocations, context, settings, len(candidates)
            )
            if fallback_result.apis:
                fallback_result.warnings = warnings + fallback_result.warnings
                fallback_result.errors = errors + fallback_result.errors
                return fallback_result
        else:
            warnings.append("Fallback strategy disabled")

        candidates_by_confidence = [
            r for r in (fallback_result, document_result) if r is not None
        ]
        if not candidates_by_confidence:
            return ExtractionResult(
                success=False,
                metadata=reconcile_metadata([], context),
                confidence=0.0,
                warnings=warnings,
                errors=errors,
                processing_stats=_stats(len(candidates), 0, 0.0),
                strategy=ExtractionStrategy.FALLBACK,
            )

        # max() keeps the first of equal elements, so ties go to the fallback
        best = max(candidates_by_confidence, key=lambda r: r.confidence)
        best.success = bool(best.apis)
        best.warnings = warnings + best.warnings + [LOW_CONFIDENCE_WARNING]
        if best is not document_result:
            best.errors = errors + best.errors
        logger.warning(
            "low_confidence_result",
            strategy=best.strategy.value,
            confidence=best.confidence,
        )
        return best

    def _tokenize(self, candidates: Sequence[CommandCandidate]) -> list[CurlInvocation]:
        invocations: list[CurlInvocation] = []
        for candidate in candidates:
            invocation = self._finder.tokenize(candidate)
            if invocation is None:
                logger.info(
                    "curl_command_skipped",
                    line_number=candidate.line_number,
                    reason="no_url",
                )
                continue
            invocations.append(invocation)
        return invocations

    async def _document_strategy(
        self,
        client: ResilientModelClient,
        markdown: str,
        context: ExtractionContext,
        settings: ExtractionConfig,
        total_commands: int,
    ) -> ExtractionResult:
        """Whole-document extraction with outer retries.

        A CircuitOpenError stops the outer retries immediately, as does any
        error that is not a ModelError.
        """
        prepared = self._preprocessor.prepare_for_model(markdown)
        attempts = settings.max_retries + 1
        last_error: Exception | None = None
        extraction: DocumentExtraction | None = None

        for attempt in range(1, attempts + 1):
            try:
                extraction = await client.extract_document(prepared, context)
                break
            except CircuitOpenError as e:
                last_error = e
                logger.warning("document_strategy_circuit_open", error=str(e))
                break
            except ModelError as e:
                last_error = e
                logger.warning(
                    "document_strategy_attempt_failed",
                    attempt=attempt,
                    max_attempts=attempts,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                if attempt < attempts:
                    await self._sleep(settings.retry_delay_seconds * attempt)
            except Exception as e:
                last_error = e
                logger.exception("document_strategy_error", error=str(e))
                break

        if extraction is None:
            logger.warning("document_strategy_failed", error=str(last_error))
            return ExtractionResult(
                success=False,
                metadata=reconcile_metadata([], context),
                confidence=0.0,
                errors=[f"Document extraction failed: {last_error}"],
                processing_stats=_stats(total_commands, 0, 0.0),
                strategy=ExtractionStrategy.DOCUMENT,
            )

        apis = [
            api.model_copy(
                update={
                    "provenance": api.provenance
                    or Provenance(
                        strategy=ProvenanceStrategy.DOCUMENT,
                        confidence=extraction.confidence,
                    )
                }
            )
            for api in extraction.apis
        ]
        if settings.use_optimization and apis:
            apis = await self._optimize(client, apis)

        cleared = extraction.confidence >= settings.confidence_threshold
        return ExtractionResult(
            success=bool(apis),
            apis=apis,
            metadata=reconcile_metadata(apis, context, reported=extraction.metadata),
            confidence=extraction.confidence,
            warnings=list(extraction.warnings),
            processing_stats=_stats(
                total_commands,
                len(apis) if cleared else 0,
                extraction.confidence,
            ),
            strategy=ExtractionStrategy.DOCUMENT,
        )

    async def _optimize(
        self, client: ResilientModelClient, apis: list[APISpecification]
    ) -> list[APISpecification]:
        """Optimize each API, keeping the original when optimization fails."""
        optimized: list[APISpecification] = []
        for api in apis:
            try:
                optimized.append(await client.optimize_spec(api))
            except (ModelError, CircuitOpenError) as e:
                logger.info("optimization_skipped", api=api.name, error=str(e))
                optimized.append(api)
            except Exception as e:
                logger.exception("optimization_error", api=api.name, error=str(e))
                optimized.append(api)
        return optimized

    async def _analyze_all(
        self,
        invocations: Sequence[CurlInvocation],
        context: ExtractionContext,
        concurrency: int,
    ) -> list[CommandAnalysis]:
        """Analyze invocations, preserving input order in the result."""
        if concurrency <= 1:
            analyses: list[CommandAnalysis] = []
            for invocation in invocations:
                analyses.append(await self._analyzer.analyze_invocation(invocation, context))
            return analyses

        semaphore = asyncio.Semaphore(concurrency)

        async def bounded(invocation: CurlInvocation) -> CommandAnalysis:
            async with semaphore:
                return await self._analyzer.analyze_invocation(invocation, context)

        return list(await asyncio.gather(*(bounded(i) for i in invocations)))

    async def _fallback_strategy(
        self,
        invocations: Sequence[CurlInvocation],
        context: ExtractionContext,
        settings: ExtractionConfig,
        total_commands: int,
    ) -> ExtractionResult:
        """Per-command analysis, keeping analyses at or above the threshold."""
        logger.info(
            "fallback_strategy_started",
            commands=len(invocations),
            concurrency=settings.max_concurrency,
        )
        if not invocations:
            return ExtractionResult(
                success=False,
                metadata=reconcile_metadata([], context),
                confidence=0.0,
                warnings=["No curl commands found in markdown"],
                processing_stats=_stats(total_commands, 0, 0.0),
                strategy=ExtractionStrategy.FALLBACK,
            )

        analyses = await self._analyze_all(
            invocations, context, settings.max_concurrency
        )
        kept = [a for a in analyses if a.confidence >= settings.confidence_threshold]
        apis = [a.api_spec for a in kept]
        average = sum(a.confidence for a in analyses) / len(analyses)

        warnings: list[str] = []
        for invocation, analysis in zip(invocations, analyses):
            warnings.extend(
                f"Line {invocation.line_number}: {warning}" for warning in analysis.warnings
            )
        degraded = sum(1 for a in analyses if a.degraded)
        if degraded:
            warnings.append(
                f"{degraded} of {len(analyses)} commands were analyzed without the model"
            )

        logger.info(
            "fallback_strategy_completed",
            analyzed=len(analyses),
            kept=len(kept),
            degraded=degraded,
            average_confidence=average,
        )
        return ExtractionResult(
            success=bool(apis),
            apis=apis,
            metadata=reconcile_metadata(apis, context),
            confidence=average,
            warnings=warnings,
            processing_stats=_stats(total_commands, len(kept), average),
            strategy=ExtractionStrategy.FALLBACK,
        )
