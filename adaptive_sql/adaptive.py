"""
Adaptive SQL Service
====================
Decorator over a :class:`~adaptive_sql.generation.GenerationService`
that uses learned feedback to rewrite prompts, adjust confidence,
personalize suggestions and enrich insights.

Every adaptive step is isolated: if the learning engine or the prompt
optimizer fails, the request is served by the base service with the
caller's original input. Only a failure of the base operation itself
reaches the caller.

Streaming, visualization and intent validation are passed straight
through to the base service.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Any, AsyncIterator, List, Optional, Sequence

from adaptive_sql.config import AdaptiveConfig
from adaptive_sql.generation import GenerationService
from adaptive_sql.learning import LearningEngine
from adaptive_sql.models import (
    ColumnMetadata,
    GenerationAttempt,
    LearningStatistics,
    QueryComplexity,
    QueryFeedback,
    SchemaMetadata,
    StreamingResponse,
)
from adaptive_sql.observability import (
    MetricsCollector,
    StructuredLogger,
    get_logger,
    get_metrics,
    initialize_observability,
)
from adaptive_sql.prompt_optimizer import PromptOptimizer
from adaptive_sql.store import LearningStore

logger = logging.getLogger("adaptive_sql.adaptive")


class AdaptiveSQLService(GenerationService):
    """Feedback-driven wrapper around a base generation service.

    Args:
        base: The non-adaptive service that actually produces SQL.
        learning: Source of insights, confidence blending and feedback.
        optimizer: Prompt rewriting and insight enrichment.
        store: Where generation attempts are recorded. ``None`` skips
            recording.
        config: ``AdaptiveConfig`` (uses the global singleton if None).
        structured_logger: Event logger (uses the global one if None).
        metrics: Metrics collector (uses the global one if None).
    """

    def __init__(
        self,
        base: GenerationService,
        learning: LearningEngine,
        optimizer: PromptOptimizer,
        store: Optional[LearningStore] = None,
        config: Optional[AdaptiveConfig] = None,
        structured_logger: Optional[StructuredLogger] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        if config is None:
            from adaptive_sql.config import get_config
            config = get_config()
        self._config = config
        self._base = base
        self._learning = learning
        self._optimizer = optimizer
        self._store = store
        self._events = structured_logger or get_logger(config.observability)
        self._metrics = metrics or get_metrics(config.observability)

    @classmethod
    def from_config(cls, config: Optional[AdaptiveConfig] = None) -> "AdaptiveSQLService":
        """Wire the default stack: provider-backed base service, JSON store,
        feedback learning engine and prompt optimizer, plus logging and
        metrics as configured under ``config.observability``.
        """
        from adaptive_sql.generation import ProviderGenerationService
        from adaptive_sql.learning import FeedbackLearningEngine

        if config is None:
            from adaptive_sql.config import get_config
            config = get_config()

        structured_logger, metrics = initialize_observability(config.observability)
        store = LearningStore.from_config(config)
        return cls(
            base=ProviderGenerationService(config=config),
            learning=FeedbackLearningEngine(store),
            optimizer=PromptOptimizer.from_config(store=store, config=config),
            store=store,
            config=config,
            structured_logger=structured_logger,
            metrics=metrics,
        )

    # ------------------------------------------------------------------
    # SQL generation
    # ------------------------------------------------------------------

    async def generate_sql(
        self,
        prompt: str,
        cancel: Optional[asyncio.Event] = None,
        user_id: Optional[str] = None,
    ) -> str:
        """Optimize *prompt* with learned insights, then generate SQL.

        Args:
            prompt: Natural-language request.
            cancel: Optional event that aborts the base call when set.
            user_id: Recorded on the generation attempt.

        Returns:
            SQL from the base service.
        """
        started = time.perf_counter()
        prompt_hash = self._prompt_hash(prompt)

        prompt_to_use = prompt
        if self._config.optimizer.enabled:
            try:
                insights = await self._learning.insights(prompt)
                prompt_to_use = await self._optimizer.optimize(prompt, insights)
            except Exception as e:
                self._degrade("generate_sql", e, prompt_hash)
                prompt_to_use = prompt

        try:
            sql = await self._base.generate_sql(prompt_to_use, cancel)
        except Exception:
            self._metrics.record_generation("error", time.perf_counter() - started)
            raise
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        success = bool(sql and sql.strip())

        confidence = await self._record_attempt(
            prompt, prompt_to_use, sql, elapsed_ms, user_id, prompt_hash
        )
        self._events.log_generation(
            prompt_hash,
            optimized=prompt_to_use != prompt,
            success=success,
            latency_ms=elapsed_ms,
            confidence=confidence,
        )
        self._metrics.record_generation("success" if success else "empty", elapsed_ms / 1000)
        return sql

    async def _record_attempt(
        self,
        prompt: str,
        optimized_prompt: str,
        sql: str,
        elapsed_ms: int,
        user_id: Optional[str],
        prompt_hash: str,
    ) -> Optional[float]:
        if self._store is None:
            return None

        try:
            confidence = await self._base.confidence_score(prompt, sql)
            attempt = GenerationAttempt(
                user_query=prompt,
                optimized_prompt_used=optimized_prompt,
                generated_sql=sql,
                is_successful=bool(sql and sql.strip()),
                confidence_score=confidence,
                user_id=user_id or "system",
                generation_time_ms=elapsed_ms,
            )
            attempt_id = await self._store.run_in_session(
                lambda session: session.add_attempt(attempt)
            )
            logger.debug("Recorded generation attempt %s (%d ms)", attempt_id, elapsed_ms)
            return confidence
        except Exception as e:
            self._events.log_error(e, {"operation": "record_attempt", "prompt_hash": prompt_hash})
            return None

    # ------------------------------------------------------------------
    # Confidence, suggestions, insights
    # ------------------------------------------------------------------

    async def confidence_score(self, natural_language_query: str, generated_sql: str) -> float:
        base_confidence = await self._base.confidence_score(natural_language_query, generated_sql)

        try:
            insights = await self._learning.insights(natural_language_query)
            return await self._learning.blend_confidence(
                base_confidence, natural_language_query, generated_sql, insights
            )
        except Exception as e:
            self._degrade("confidence_score", e, self._prompt_hash(natural_language_query))
            return base_confidence

    async def query_suggestions(self, context: str, schema: SchemaMetadata) -> List[str]:
        base_suggestions = await self._base.query_suggestions(context, schema)

        try:
            personalized = await self._learning.personalized_suggestions(context, schema)
        except Exception as e:
            self._degrade("query_suggestions", e)
            return base_suggestions

        return list(dict.fromkeys([*base_suggestions, *personalized]))

    async def generate_insight(self, query: str, data: Sequence[Any]) -> str:
        try:
            context = await self._learning.insight_context(query)
        except Exception as e:
            self._degrade("generate_insight", e, self._prompt_hash(query))
            context = None

        base_insight = await self._base.generate_insight(query, data)
        if context is None:
            return base_insight

        try:
            return await self._optimizer.enhance_insight(base_insight, context, data)
        except Exception as e:
            self._degrade("generate_insight", e, self._prompt_hash(query))
            return base_insight

    # ------------------------------------------------------------------
    # Pass-through
    # ------------------------------------------------------------------

    async def generate_visualization_config(
        self, query: str, columns: Sequence[ColumnMetadata], data: Sequence[Any]
    ) -> str:
        return await self._base.generate_visualization_config(query, columns, data)

    async def validate_query_intent(self, natural_language_query: str) -> bool:
        return await self._base.validate_query_intent(natural_language_query)

    def sql_stream(
        self,
        prompt: str,
        schema: Optional[SchemaMetadata] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamingResponse]:
        return self._base.sql_stream(prompt, schema, cancel)

    def insight_stream(
        self,
        query: str,
        data: Sequence[Any],
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamingResponse]:
        return self._base.insight_stream(query, data, cancel)

    def explanation_stream(
        self,
        sql: str,
        complexity: QueryComplexity = QueryComplexity.MEDIUM,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamingResponse]:
        return self._base.explanation_stream(sql, complexity, cancel)

    # ------------------------------------------------------------------
    # Feedback loop
    # ------------------------------------------------------------------

    async def process_feedback(
        self,
        prompt: str,
        sql: str,
        feedback: QueryFeedback,
        user_id: str,
    ) -> None:
        """Hand user feedback to the learning engine. Never raises."""
        prompt_hash = self._prompt_hash(prompt)
        try:
            await self._learning.record_feedback(prompt, sql, feedback, user_id)
        except Exception as e:
            self._events.log_error(e, {"operation": "process_feedback", "prompt_hash": prompt_hash})
            return
        rating = feedback.to_rating()
        self._events.log_feedback(prompt_hash, user_id, rating)
        self._metrics.record_feedback(rating)

    async def learning_statistics(self) -> LearningStatistics:
        return await self._learning.statistics()

    def _degrade(
        self, operation: str, error: BaseException, prompt_hash: Optional[str] = None
    ) -> None:
        self._events.log_degradation(operation, error, prompt_hash)
        self._metrics.record_degradation(operation)

    @staticmethod
    def _prompt_hash(prompt: str) -> str:
        return hashlib.sha256((prompt or "").encode("utf-8")).hexdigest()[:16]
