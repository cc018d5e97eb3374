"""
SQL Generation Service
======================
The non-adaptive generation service: builds prompts, resolves a
provider for each call and turns completions into SQL, insights,
visualization configs and streamed explanations.

``GenerationService`` is the interface shared with the adaptive
decorator in :mod:`adaptive_sql.adaptive`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, List, Optional, Sequence

from adaptive_sql.config import AdaptiveConfig
from adaptive_sql.confidence import calculate_confidence
from adaptive_sql.models import (
    ColumnMetadata,
    CompletionOptions,
    QueryComplexity,
    SchemaMetadata,
    StreamingResponse,
    StreamingResponseKind,
)
from adaptive_sql.providers import ProviderFactory
from adaptive_sql.resilience import TRANSIENT_ERRORS, CircuitBreaker, retry_async

logger = logging.getLogger("adaptive_sql.generation")

SQL_SYSTEM_MESSAGE = (
    "You are an expert SQL developer. Generate only valid SQL queries "
    "without explanations."
)
INSIGHT_SYSTEM_MESSAGE = (
    "You are a business intelligence analyst providing insights from data."
)
VISUALIZATION_SYSTEM_MESSAGE = (
    "You are a data visualization expert. Return only valid JSON."
)
EXPLANATION_SYSTEM_MESSAGE = "You are a SQL expert explaining queries in simple terms."

FALLBACK_INSIGHT = "AI service not configured. Unable to generate insights."
FALLBACK_VISUALIZATION = '{"type": "table", "title": "Query Results"}'

_DEFAULT_SUGGESTIONS = (
    "Show me the total count of records",
    "What are the top 10 items by value?",
    "Show me data from the last 30 days",
    "Group results by category",
    "Show me the average values",
)
_DESTRUCTIVE_KEYWORDS = ("drop", "delete", "truncate", "alter", "create", "insert", "update")
_READ_KEYWORDS = ("show", "get", "find", "list", "count", "sum", "average", "total")


class EmptyCompletionError(RuntimeError):
    """Raised when a provider returns no SQL."""


class GenerationService(ABC):
    """Operations every SQL generation service offers."""

    @abstractmethod
    async def generate_sql(self, prompt: str, cancel: Optional[asyncio.Event] = None) -> str:
        raise NotImplementedError

    @abstractmethod
    async def confidence_score(self, natural_language_query: str, generated_sql: str) -> float:
        raise NotImplementedError

    @abstractmethod
    async def query_suggestions(self, context: str, schema: SchemaMetadata) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    async def generate_insight(self, query: str, data: Sequence[Any]) -> str:
        raise NotImplementedError

    @abstractmethod
    async def generate_visualization_config(
        self, query: str, columns: Sequence[ColumnMetadata], data: Sequence[Any]
    ) -> str:
        raise NotImplementedError

    @abstractmethod
    async def validate_query_intent(self, natural_language_query: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def sql_stream(
        self,
        prompt: str,
        schema: Optional[SchemaMetadata] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamingResponse]:
        raise NotImplementedError

    @abstractmethod
    def insight_stream(
        self,
        query: str,
        data: Sequence[Any],
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamingResponse]:
        raise NotImplementedError

    @abstractmethod
    def explanation_stream(
        self,
        sql: str,
        complexity: QueryComplexity = QueryComplexity.MEDIUM,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamingResponse]:
        raise NotImplementedError


class ProviderGenerationService(GenerationService):
    """Generation service backed by whichever provider the factory picks.

    Args:
        provider_factory: Resolves the provider on every call.
        config: ``AdaptiveConfig`` (uses the global singleton if None).
    """

    def __init__(
        self,
        provider_factory: Optional[ProviderFactory] = None,
        config: Optional[AdaptiveConfig] = None,
    ) -> None:
        if config is None:
            from adaptive_sql.config import get_config
            config = get_config()
        self._config = config
        self._factory = provider_factory or ProviderFactory(config)
        self._breaker = CircuitBreaker(
            failure_threshold=config.resilience.failure_threshold,
            recovery_timeout=config.resilience.recovery_timeout,
            expected_exception=TRANSIENT_ERRORS,
        )

    # ------------------------------------------------------------------
    # Completions
    # ------------------------------------------------------------------

    async def generate_sql(self, prompt: str, cancel: Optional[asyncio.Event] = None) -> str:
        provider = self._factory.get_provider()
        options = CompletionOptions(
            system_message=SQL_SYSTEM_MESSAGE,
            temperature=0.1,
            max_tokens=self._config.llm.max_tokens,
        )
        started = time.perf_counter()

        raw = await _await_unless_cancelled(
            self._breaker.call(
                retry_async,
                provider.complete,
                build_sql_prompt(prompt),
                options,
                max_retries=self._config.resilience.max_retries,
                base_delay=self._config.resilience.base_delay,
                backoff_factor=self._config.resilience.backoff_factor,
            ),
            cancel,
        )
        if not raw or not raw.strip():
            raise EmptyCompletionError("AI provider returned an empty result")

        sql = clean_sql_response(raw)
        logger.info(
            "Generated SQL with %s in %.0fms",
            provider.name, (time.perf_counter() - started) * 1000,
        )
        return sql

    async def confidence_score(self, natural_language_query: str, generated_sql: str) -> float:
        return calculate_confidence(natural_language_query, generated_sql)

    async def query_suggestions(self, context: str, schema: SchemaMetadata) -> List[str]:
        suggestions = list(_DEFAULT_SUGGESTIONS)

        for table in schema.tables[:3]:
            suggestions.append(f"Show me all data from {table.name}")
            if any("date" in column.name.lower() for column in table.columns):
                suggestions.append(f"Show me recent {table.name} records")

        return suggestions[:8]

    async def generate_insight(self, query: str, data: Sequence[Any]) -> str:
        prompt = (
            "Analyze the following query results and provide business insights:\n\n"
            f"Query: {query}\n"
            f"Data Preview: {data_preview(data)}\n\n"
            "Provide 2-3 key insights about the data, focusing on:\n"
            "1. Notable patterns or trends\n"
            "2. Business implications\n"
            "3. Potential areas for further investigation\n\n"
            "Keep insights concise and actionable."
        )
        options = CompletionOptions(
            system_message=INSIGHT_SYSTEM_MESSAGE, temperature=0.3, max_tokens=500
        )
        try:
            return await self._factory.get_provider().complete(prompt, options)
        except Exception as e:
            logger.error("Error generating insights: %s", e)
            return FALLBACK_INSIGHT

    async def generate_visualization_config(
        self, query: str, columns: Sequence[ColumnMetadata], data: Sequence[Any]
    ) -> str:
        column_info = ", ".join(f"{c.name} ({c.data_type})" for c in columns)
        prompt = (
            "Based on this query and data, suggest the best visualization:\n\n"
            f"Query: {query}\n"
            f"Columns: {column_info}\n"
            f"Data Preview: {data_preview(data)}\n\n"
            "Return a JSON object with:\n"
            "- type: chart type (bar, line, pie, table, scatter, area)\n"
            "- title: descriptive title\n"
            "- xAxis: column for x-axis (if applicable)\n"
            "- yAxis: column for y-axis (if applicable)\n"
            "- groupBy: column for grouping (if applicable)\n\n"
            "Return only valid JSON."
        )
        options = CompletionOptions(
            system_message=VISUALIZATION_SYSTEM_MESSAGE, temperature=0.2, max_tokens=300
        )
        try:
            return await self._factory.get_provider().complete(prompt, options)
        except Exception as e:
            logger.error("Error generating visualization config: %s", e)
            return FALLBACK_VISUALIZATION

    async def validate_query_intent(self, natural_language_query: str) -> bool:
        lowered = natural_language_query.lower()
        if any(keyword in lowered for keyword in _DESTRUCTIVE_KEYWORDS):
            return False
        return any(keyword in lowered for keyword in _READ_KEYWORDS)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def sql_stream(
        self,
        prompt: str,
        schema: Optional[SchemaMetadata] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamingResponse]:
        try:
            stream_prompt = build_sql_prompt(prompt, schema)
        except Exception as e:
            logger.error("Error building SQL generation prompt: %s", e)
            stream_prompt = f"Generate SQL for: {prompt}"

        options = CompletionOptions(
            system_message=SQL_SYSTEM_MESSAGE, temperature=0.1, max_tokens=1000
        )
        provider = self._factory.get_provider()
        async for chunk in provider.stream_complete(
            stream_prompt, options, StreamingResponseKind.SQL_GENERATION, cancel
        ):
            yield chunk

    async def insight_stream(
        self,
        query: str,
        data: Sequence[Any],
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamingResponse]:
        try:
            stream_prompt = (
                "Analyze the following query results and provide business insights:\n\n"
                f"Query: {query}\n"
                f"Data Preview: {data_preview(data)}"
            )
        except Exception as e:
            logger.error("Error building insight generation prompt: %s", e)
            stream_prompt = f"Analyze the following query and provide insights: {query}"

        options = CompletionOptions(
            system_message=INSIGHT_SYSTEM_MESSAGE, temperature=0.3, max_tokens=500
        )
        provider = self._factory.get_provider()
        async for chunk in provider.stream_complete(
            stream_prompt, options, StreamingResponseKind.INSIGHT, cancel
        ):
            yield chunk

    async def explanation_stream(
        self,
        sql: str,
        complexity: QueryComplexity = QueryComplexity.MEDIUM,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamingResponse]:
        depth = {
            QueryComplexity.SIMPLE: "in one or two plain sentences",
            QueryComplexity.MEDIUM: "step by step, clause by clause",
            QueryComplexity.COMPLEX: "in detail, including joins, grouping and performance notes",
        }.get(complexity, "step by step")
        stream_prompt = f"Explain the following SQL query {depth}:\n\n{sql}"

        options = CompletionOptions(
            system_message=EXPLANATION_SYSTEM_MESSAGE, temperature=0.2, max_tokens=800
        )
        provider = self._factory.get_provider()
        async for chunk in provider.stream_complete(
            stream_prompt, options, StreamingResponseKind.EXPLANATION, cancel
        ):
            yield chunk


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def build_sql_prompt(prompt: str, schema: Optional[SchemaMetadata] = None) -> str:
    """Wrap a natural-language request in the SQL generation template."""
    parts = [f"Generate SQL for: {prompt}"]
    if schema is not None and schema.tables:
        lines = []
        for table in schema.tables:
            columns = ", ".join(f"{c.name} {c.data_type}" for c in table.columns)
            lines.append(f"- {table.name}({columns})")
        parts.append("Available tables:\n" + "\n".join(lines))
    parts.append("Return a single read-only SELECT statement.")
    return "\n\n".join(parts)


def clean_sql_response(sql: str) -> str:
    """Strip markdown code fences from a completion."""
    return sql.replace("```sql", "").replace("```", "").strip()


def data_preview(data: Sequence[Any]) -> str:
    if not data:
        return "No data available"
    preview = ", ".join(str(item) for item in list(data)[:3])
    return preview + ("..." if len(data) > 3 else "")


async def _await_unless_cancelled(awaitable: Awaitable[Any], cancel: Optional[asyncio.Event]) -> Any:
    """Await *awaitable*, abandoning it if *cancel* is set first.

    Raises:
        asyncio.CancelledError: *cancel* was set before the result arrived.
    """
    if cancel is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task.done():
        return task.result()

    task.cancel()
    raise asyncio.CancelledError("SQL generation cancelled")
