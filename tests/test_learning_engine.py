"""
Tests for FeedbackLearningEngine
================================
Validates insight aggregation, confidence blending, personalized
suggestions, insight context, feedback recording and statistics.
"""

import time

import pytest

from adaptive_sql.learning import (
    OPTIMIZATION_SUGGESTIONS,
    FeedbackLearningEngine,
    extract_keywords,
    extract_prompt_pattern,
    extract_sql_pattern,
)
from adaptive_sql.models import (
    FeedbackEntry,
    GenerationAttempt,
    LearningInsights,
    QueryFeedback,
    SchemaMetadata,
    TableMetadata,
)


@pytest.fixture
def engine(tmp_store):
    return FeedbackLearningEngine(tmp_store)


def _seed(store, *entries):
    with store.session() as session:
        for entry in entries:
            session.add_feedback(entry)


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------

class TestInsights:
    @pytest.mark.asyncio
    async def test_empty_history(self, engine):
        insights = await engine.insights("show me sales")

        assert insights.prompt_pattern == "display_query"
        assert insights.successful_patterns == []
        assert insights.common_mistakes == []
        assert insights.optimization_suggestions == []
        assert insights.confidence_modifier == 0.0
        assert insights.sample_count == 0

    @pytest.mark.asyncio
    async def test_aggregates_category_history(self, engine):
        await engine.record_feedback(
            "show monthly revenue by region", "SELECT 1", QueryFeedback("positive"), "u1"
        )
        await engine.record_feedback(
            "show revenue totals", "SELECT 2", QueryFeedback("positive"), "u2"
        )
        await engine.record_feedback(
            "show orders",
            "SELECT * FROM orders WHERE status = 'broken'",
            QueryFeedback("negative"),
            "u1",
        )
        await engine.record_feedback(
            "count the invoices", "SELECT COUNT(*) FROM invoices", QueryFeedback("negative"), "u3"
        )

        insights = await engine.insights("show me revenue")

        assert insights.sample_count == 3
        assert insights.successful_patterns[:2] == ["show", "revenue"]
        assert set(insights.successful_patterns[2:]) == {"monthly", "region", "totals"}
        assert insights.common_mistakes == ["select", "from", "orders", "where", "status"]
        assert insights.optimization_suggestions == list(OPTIMIZATION_SUGGESTIONS)
        assert insights.confidence_modifier == pytest.approx((2 / 3 - 0.5) * 0.3)

    @pytest.mark.asyncio
    async def test_no_suggestions_without_bad_samples(self, engine):
        await engine.record_feedback("show sales", "SELECT 1", QueryFeedback("positive"), "u1")
        insights = await engine.insights("show sales")
        assert insights.optimization_suggestions == []
        assert insights.confidence_modifier == pytest.approx(0.15)

    @pytest.mark.asyncio
    async def test_history_window(self, engine, tmp_store):
        now = time.time()
        _seed(tmp_store, *[
            FeedbackEntry(timestamp=now - i, original_query="show x", rating=5, category="display_query")
            for i in range(120)
        ])
        insights = await engine.insights("show sales")
        assert insights.sample_count == 100


# ---------------------------------------------------------------------------
# Confidence blending
# ---------------------------------------------------------------------------

class TestBlendConfidence:
    @pytest.fixture
    def insights(self):
        return LearningInsights(
            successful_patterns=["revenue"],
            common_mistakes=["broken"],
            confidence_modifier=0.05,
            sample_count=11,
        )

    @pytest.mark.asyncio
    async def test_all_adjustments(self, engine, insights):
        score = await engine.blend_confidence(0.5, "Revenue by month", "SELECT broken", insights)
        assert score == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_clamped_high(self, engine, insights):
        assert await engine.blend_confidence(0.95, "revenue", "SELECT 1", insights) == 1.0

    @pytest.mark.asyncio
    async def test_clamped_low(self, engine):
        insights = LearningInsights(common_mistakes=["broken"], confidence_modifier=-0.15)
        assert await engine.blend_confidence(0.1, "q", "BROKEN sql", insights) == 0.0

    @pytest.mark.asyncio
    async def test_no_signals_keeps_base(self, engine):
        assert await engine.blend_confidence(0.7, "q", "s", LearningInsights()) == pytest.approx(0.7)


# ---------------------------------------------------------------------------
# Suggestions & insight context
# ---------------------------------------------------------------------------

class TestPersonalizedSuggestions:
    @pytest.mark.asyncio
    async def test_popular_recent_categories(self, engine, tmp_store):
        now = time.time()
        entries = (
            [FeedbackEntry(timestamp=now, rating=5, category="display_query")] * 3
            + [FeedbackEntry(timestamp=now, rating=4, category="count_query")] * 2
            + [FeedbackEntry(timestamp=now, rating=5, category="join_query")]
            + [FeedbackEntry(timestamp=now, rating=1, category="sum_query")] * 4
            + [FeedbackEntry(timestamp=now - 40 * 86400, rating=5, category="average_query")] * 5
        )
        _seed(tmp_store, *[FeedbackEntry(**vars(e)) for e in entries])

        schema = SchemaMetadata(tables=[TableMetadata("orders")])
        suggestions = await engine.personalized_suggestions("", schema)

        assert suggestions == [
            "Show me all records from orders",
            "Count the total number of records in orders",
        ]

    @pytest.mark.asyncio
    async def test_default_table_name(self, engine, tmp_store):
        _seed(tmp_store, FeedbackEntry(timestamp=time.time(), rating=5, category="count_query"))
        suggestions = await engine.personalized_suggestions("", SchemaMetadata())
        assert suggestions == ["Count the total number of records in table"]


class TestInsightContext:
    @pytest.mark.asyncio
    async def test_hints_from_rated_comments(self, engine, tmp_store):
        _seed(
            tmp_store,
            FeedbackEntry(
                rating=5,
                category="grouped_query",
                comments="Group by region works well. Short. Totals per region are easier to compare.",
            ),
            FeedbackEntry(rating=2, category="grouped_query", comments="Wrong grouping entirely here."),
        )
        context = await engine.insight_context("SELECT region, SUM(x) FROM t GROUP BY region")

        assert context.query_pattern == "grouped_query"
        assert len(context.related_insights) == 1
        assert [h.strip() for h in context.contextual_hints] == [
            "Group by region works well",
            "Totals per region are easier to compare",
        ]

    @pytest.mark.asyncio
    async def test_no_history(self, engine):
        context = await engine.insight_context("SELECT 1")
        assert context.query_pattern == "simple_query"
        assert context.contextual_hints == []


# ---------------------------------------------------------------------------
# Feedback & statistics
# ---------------------------------------------------------------------------

class TestFeedbackAndStatistics:
    @pytest.mark.asyncio
    async def test_record_feedback_persists_entry(self, engine, tmp_store):
        await engine.record_feedback(
            "count orders", "SELECT COUNT(*) FROM orders",
            QueryFeedback("neutral", comments="ok", rating=4), "u1",
        )

        with tmp_store.session() as session:
            (entry,) = session.feedback_entries()
        assert entry.rating == 4
        assert entry.category == "count_query"
        assert entry.feedback_type == "neutral"
        assert entry.comments == "ok"
        assert entry.user_id == "u1"
        assert entry.timestamp > 0

    @pytest.mark.asyncio
    async def test_statistics(self, engine, tmp_store):
        await engine.record_feedback("show a", "s", QueryFeedback("positive"), "u1")
        await engine.record_feedback("show b", "s", QueryFeedback("negative"), "u1")
        await engine.record_feedback("count c", "s", QueryFeedback("positive"), "u2")
        with tmp_store.session() as session:
            session.add_attempt(GenerationAttempt("q", "q", "s", confidence_score=0.8))
            session.add_attempt(GenerationAttempt("q", "q", "", confidence_score=0.0))

        stats = await engine.statistics()

        assert stats.total_generations == 2
        assert stats.total_feedback_items == 3
        assert stats.average_rating == pytest.approx(11 / 3)
        assert stats.average_confidence == pytest.approx(0.8)
        assert stats.unique_users == 2
        assert stats.popular_patterns == {"display_query": 1, "count_query": 1}

    @pytest.mark.asyncio
    async def test_statistics_empty(self, engine):
        stats = await engine.statistics()
        assert stats.total_generations == 0
        assert stats.average_rating == 0.0
        assert stats.average_confidence == 0.0


# ---------------------------------------------------------------------------
# Classification helpers
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("prompt,pattern", [
    ("Show me sales", "display_query"),
    ("how many customers in total", "count_query"),
    ("what is the mean price", "average_query"),
    ("sum of sales", "sum_query"),
    ("orders grouped by region", "group_query"),
    ("join customers with orders", "join_query"),
    ("filter where active", "filter_query"),
    ("hello", "general_query"),
])
def test_extract_prompt_pattern(prompt, pattern):
    assert extract_prompt_pattern(prompt) == pattern


@pytest.mark.parametrize("sql,pattern", [
    ("SELECT a, COUNT(*) FROM t GROUP BY a", "grouped_query"),
    ("select * from a join b on a.id = b.id", "joined_query"),
    ("SELECT 1 UNION SELECT 2", "union_query"),
    ("SELECT * FROM (SELECT 1) x", "subquery"),
    ("SELECT * FROM t ORDER BY a", "ordered_query"),
    ("SELECT 1", "simple_query"),
])
def test_extract_sql_pattern(sql, pattern):
    assert extract_sql_pattern(sql) == pattern


def test_extract_keywords():
    assert extract_keywords("Show the total revenue for each region!") == [
        "show", "total", "revenue", "each", "region",
    ]
