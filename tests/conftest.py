"""Shared test fixtures for the adaptive SQL test suite.

Provides fake providers, a fake base generation service, a fake learning
engine, configs and temporary stores. Unit tests never need API keys or
network access.
"""

import asyncio
import logging
from types import SimpleNamespace
from typing import Any, AsyncIterator, List, Optional, Sequence

import pytest

from adaptive_sql.config import (
    AdaptiveConfig,
    AzureOpenAIProviderConfig,
    FallbackConfig,
    LLMConfig,
    ObservabilityConfig,
    OpenAIProviderConfig,
    ResilienceConfig,
    StorageConfig,
)
from adaptive_sql.generation import GenerationService
from adaptive_sql.learning import LearningEngine
from adaptive_sql.models import (
    BusinessTableInfo,
    CompletionOptions,
    FeedbackEntry,
    InsightContext,
    LearningInsights,
    LearningStatistics,
    QueryComplexity,
    SchemaMetadata,
    StreamingResponse,
    StreamingResponseKind,
)
from adaptive_sql.observability import StructuredLogger
from adaptive_sql.providers import SQLProvider
from adaptive_sql.store import LearningStore


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

def make_config(tmp_path=None, openai_key=None, azure_complete=False, prefer_azure=False):
    """Build an ``AdaptiveConfig`` that ignores the process environment."""
    azure = AzureOpenAIProviderConfig(
        api_key="azure-key" if azure_complete else None,
        endpoint="https://example.openai.azure.com" if azure_complete else None,
        deployment_name="sql-deployment" if azure_complete else None,
    )
    return AdaptiveConfig(
        llm=LLMConfig(
            prefer_azure_openai=prefer_azure,
            openai=OpenAIProviderConfig(api_key=openai_key),
            azure_openai=azure,
        ),
        fallback=FallbackConfig(chunk_delay_seconds=0.0),
        resilience=ResilienceConfig(max_retries=2, base_delay=0.0, failure_threshold=5),
        storage=StorageConfig(data_dir=str(tmp_path / "store") if tmp_path else ".cache/test"),
        observability=ObservabilityConfig(log_to_file=False),
    )


@pytest.fixture
def test_config(tmp_path):
    """Return an ``AdaptiveConfig`` with no providers configured."""
    return make_config(tmp_path)


# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------

class FakeProvider(SQLProvider):
    """A provider that returns canned completions or raises queued errors."""

    def __init__(
        self,
        name: str = "openai",
        configured: bool = True,
        response: str = "SELECT * FROM sales",
        errors: Optional[List[BaseException]] = None,
        chunks: Sequence[str] = ("SELECT ", "1"),
    ):
        self.name = name
        self._configured = configured
        self.response = response
        self.errors = list(errors or [])
        self.chunks = list(chunks)
        self.calls: List[str] = []
        self.options: List[CompletionOptions] = []

    @property
    def is_configured(self) -> bool:
        return self._configured

    async def complete(self, prompt: str, options: Optional[CompletionOptions] = None) -> str:
        self.calls.append(prompt)
        self.options.append(options)
        if self.errors:
            raise self.errors.pop(0)
        return self.response

    async def stream_complete(
        self,
        prompt: str,
        options: Optional[CompletionOptions] = None,
        kind: StreamingResponseKind = StreamingResponseKind.COMPLETION,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamingResponse]:
        self.calls.append(prompt)
        for index, content in enumerate(self.chunks):
            if cancel is not None and cancel.is_set():
                return
            yield StreamingResponse(kind=kind, content=content, chunk_index=index)
        yield StreamingResponse(kind=kind, content="", is_complete=True, chunk_index=len(self.chunks))


class ExplodingProvider(FakeProvider):
    """A provider whose configuration check raises."""

    @property
    def is_configured(self) -> bool:
        raise RuntimeError("credential vault unreachable")


# ---------------------------------------------------------------------------
# Fake base generation service
# ---------------------------------------------------------------------------

class FakeBaseService(GenerationService):
    """Records every call and returns canned values."""

    def __init__(
        self,
        sql: str = "SELECT * FROM sales",
        confidence: float = 0.8,
        suggestions: Sequence[str] = ("a", "b"),
        insight: str = "Sales are up.",
        error: Optional[BaseException] = None,
    ):
        self.sql = sql
        self.confidence = confidence
        self.suggestions = list(suggestions)
        self.insight = insight
        self.error = error
        self.prompts: List[str] = []
        self.stream_calls: List[tuple] = []

    async def generate_sql(self, prompt: str, cancel: Optional[asyncio.Event] = None) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.sql

    async def confidence_score(self, natural_language_query: str, generated_sql: str) -> float:
        return self.confidence

    async def query_suggestions(self, context: str, schema: SchemaMetadata) -> List[str]:
        return list(self.suggestions)

    async def generate_insight(self, query: str, data: Sequence[Any]) -> str:
        return self.insight

    async def generate_visualization_config(self, query, columns, data) -> str:
        return '{"type": "bar"}'

    async def validate_query_intent(self, natural_language_query: str) -> bool:
        return "drop" not in natural_language_query.lower()

    async def _chunks(self, kind: StreamingResponseKind) -> AsyncIterator[StreamingResponse]:
        yield StreamingResponse(kind=kind, content="part", chunk_index=0)
        yield StreamingResponse(kind=kind, content="", is_complete=True, chunk_index=1)

    def sql_stream(self, prompt, schema=None, cancel=None):
        self.stream_calls.append(("sql", prompt))
        return self._chunks(StreamingResponseKind.SQL_GENERATION)

    def insight_stream(self, query, data, cancel=None):
        self.stream_calls.append(("insight", query))
        return self._chunks(StreamingResponseKind.INSIGHT)

    def explanation_stream(self, sql, complexity=QueryComplexity.MEDIUM, cancel=None):
        self.stream_calls.append(("explanation", sql))
        return self._chunks(StreamingResponseKind.EXPLANATION)


# ---------------------------------------------------------------------------
# Fake learning engine
# ---------------------------------------------------------------------------

class FakeLearningEngine(LearningEngine):
    """Learning engine with canned answers; ``fail_on`` names methods that raise."""

    def __init__(
        self,
        insights: Optional[LearningInsights] = None,
        personalized: Sequence[str] = (),
        context: Optional[InsightContext] = None,
        blended: float = 0.95,
        fail_on: Sequence[str] = (),
    ):
        self._insights = insights or LearningInsights()
        self._personalized = list(personalized)
        self._context = context or InsightContext(query_pattern="simple_query")
        self._blended = blended
        self.fail_on = set(fail_on)
        self.feedback: List[tuple] = []

    def _maybe_fail(self, method: str):
        if method in self.fail_on:
            raise RuntimeError(f"{method} unavailable")

    async def insights(self, prompt: str) -> LearningInsights:
        self._maybe_fail("insights")
        return self._insights

    async def blend_confidence(self, base_confidence, query, sql, insights) -> float:
        self._maybe_fail("blend_confidence")
        return self._blended

    async def personalized_suggestions(self, context, schema) -> List[str]:
        self._maybe_fail("personalized_suggestions")
        return list(self._personalized)

    async def insight_context(self, query: str) -> InsightContext:
        self._maybe_fail("insight_context")
        return self._context

    async def record_feedback(self, prompt, sql, feedback, user_id) -> None:
        self._maybe_fail("record_feedback")
        self.feedback.append((prompt, sql, feedback, user_id))

    async def statistics(self) -> LearningStatistics:
        self._maybe_fail("statistics")
        return LearningStatistics(total_generations=7)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fakes():
    """Expose the fake collaborators and config builder to test modules."""
    return SimpleNamespace(
        Provider=FakeProvider,
        ExplodingProvider=ExplodingProvider,
        BaseService=FakeBaseService,
        LearningEngine=FakeLearningEngine,
        config=make_config,
    )


@pytest.fixture
def tmp_store(tmp_path):
    """Return an empty ``LearningStore`` in a temporary directory."""
    return LearningStore(data_dir=str(tmp_path / "store"))


@pytest.fixture
def seeded_store(tmp_store):
    """Return a store with business tables and rated feedback."""
    with tmp_store.session() as session:
        session.replace_business_tables([
            BusinessTableInfo("sales_orders", "Customer sales transactions"),
            BusinessTableInfo("inventory", "Warehouse stock levels"),
            BusinessTableInfo("employees", "Staff directory"),
        ])
        session.add_feedback(FeedbackEntry(
            original_query="show me grouped sales",
            generated_sql="SELECT region, SUM(amount) FROM sales GROUP BY region",
            rating=5,
            comments="Grouping by region made the totals easy to compare across teams.",
            category="grouped_query",
        ))
        session.add_feedback(FeedbackEntry(
            original_query="show sales by region",
            generated_sql="SELECT region FROM sales GROUP BY region",
            rating=4,
            comments="Too short",
            category="grouped_query",
        ))
    return tmp_store


class ListHandler(logging.Handler):
    """Collects emitted records for assertions."""

    def __init__(self):
        super().__init__()
        self.records: List[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def event_log(request):
    """Return ``(StructuredLogger, ListHandler)`` on a per-test logger name."""
    handler = ListHandler()
    name = f"tests.events.{request.node.name}"
    logger = logging.getLogger(name)
    logger.addHandler(handler)
    structured = StructuredLogger(name)
    yield structured, handler
    logger.removeHandler(handler)
