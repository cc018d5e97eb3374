"""
Feedback Learning Engine
========================
Turns rated user feedback into advisory signals for the adaptive layer:
prompt insights, confidence adjustments, personalized suggestions and
insight context.

Prompts and SQL are bucketed into coarse categories by keyword. Feedback
is stored under its prompt category, and every aggregate below is
computed over one category's history.

Nothing here is cached between calls. Each operation opens its own
:class:`~adaptive_sql.store.StoreSession`.
"""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from collections import Counter
from typing import Iterable, List, Optional

from adaptive_sql.models import (
    FeedbackEntry,
    InsightContext,
    LearningInsights,
    LearningStatistics,
    QueryFeedback,
    SchemaMetadata,
)
from adaptive_sql.store import LearningStore

logger = logging.getLogger("adaptive_sql.learning")

STOP_WORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "had",
    "her", "was", "one", "our", "out", "day", "get", "has", "him", "his",
    "how", "its", "may", "new", "now", "old", "see", "two", "who", "boy",
    "did", "man", "men", "put", "say", "she", "too", "use",
})

OPTIMIZATION_SUGGESTIONS = (
    "Use more specific table and column names",
    "Include proper JOIN conditions",
    "Add appropriate WHERE clauses for filtering",
)

HISTORY_WINDOW = 100
SUGGESTION_WINDOW_DAYS = 30
GOOD_RATING = 4
BAD_RATING = 3

_KEYWORD_SPLIT_RE = re.compile(r"\W+")


class LearningEngine(ABC):
    """Source of learned signals consumed by the adaptive service."""

    @abstractmethod
    async def insights(self, prompt: str) -> LearningInsights:
        raise NotImplementedError

    @abstractmethod
    async def blend_confidence(
        self,
        base_confidence: float,
        query: str,
        sql: str,
        insights: LearningInsights,
    ) -> float:
        raise NotImplementedError

    @abstractmethod
    async def personalized_suggestions(self, context: str, schema: SchemaMetadata) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    async def insight_context(self, query: str) -> InsightContext:
        raise NotImplementedError

    @abstractmethod
    async def record_feedback(
        self,
        prompt: str,
        sql: str,
        feedback: QueryFeedback,
        user_id: str,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    async def statistics(self) -> LearningStatistics:
        raise NotImplementedError


class FeedbackLearningEngine(LearningEngine):
    """Learning engine backed by the feedback rows in a :class:`LearningStore`.

    Args:
        store: Where feedback and generation attempts live.
    """

    def __init__(self, store: LearningStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Insights & confidence
    # ------------------------------------------------------------------

    async def insights(self, prompt: str) -> LearningInsights:
        """Aggregate the recent feedback history of *prompt*'s category.

        Args:
            prompt: Natural-language request about to be optimized.

        Returns:
            Insights built from at most the last 100 entries of the
            category. Empty lists when there is no history.
        """
        pattern = extract_prompt_pattern(prompt)

        history = await self._store.run_in_session(
            lambda session: [e for e in session.feedback_entries() if e.category == pattern]
        )

        history.sort(key=lambda e: e.timestamp, reverse=True)
        history = history[:HISTORY_WINDOW]

        good = [e for e in history if e.rating >= GOOD_RATING]
        bad = [e for e in history if e.rating < BAD_RATING]

        insights = LearningInsights(
            successful_patterns=_top_keywords((e.original_query for e in good), 10),
            common_mistakes=_top_keywords((e.generated_sql or "" for e in bad), 5),
            optimization_suggestions=list(OPTIMIZATION_SUGGESTIONS) if good and bad else [],
            prompt_pattern=pattern,
            confidence_modifier=_confidence_modifier(len(good), len(history)),
            sample_count=len(history),
        )
        logger.debug(
            "Insights for %s: %d sample(s), modifier %.3f",
            pattern, insights.sample_count, insights.confidence_modifier,
        )
        return insights

    async def blend_confidence(
        self,
        base_confidence: float,
        query: str,
        sql: str,
        insights: LearningInsights,
    ) -> float:
        adjustment = insights.confidence_modifier

        if insights.sample_count > 10:
            adjustment += 0.1

        query_lower = (query or "").lower()
        if any(p.lower() in query_lower for p in insights.successful_patterns):
            adjustment += 0.15

        sql_lower = (sql or "").lower()
        if any(m.lower() in sql_lower for m in insights.common_mistakes):
            adjustment -= 0.2

        return max(0.0, min(1.0, base_confidence + adjustment))

    # ------------------------------------------------------------------
    # Suggestions & insight context
    # ------------------------------------------------------------------

    async def personalized_suggestions(self, context: str, schema: SchemaMetadata) -> List[str]:
        """Suggestions for the categories users rated well in the last 30 days."""
        cutoff = time.time() - SUGGESTION_WINDOW_DAYS * 86400

        recent = await self._store.run_in_session(
            lambda session: [
                e for e in session.feedback_entries()
                if e.rating >= GOOD_RATING and e.timestamp > cutoff
            ]
        )

        popular = Counter(e.category or "general_query" for e in recent)
        first_table = schema.tables[0].name if schema and schema.tables else "table"

        suggestions = []
        for category, _count in popular.most_common(5):
            suggestion = _suggestion_for_category(category, first_table)
            if suggestion:
                suggestions.append(suggestion)
        return suggestions

    async def insight_context(self, query: str) -> InsightContext:
        pattern = extract_sql_pattern(query)

        comments = await self._store.run_in_session(
            lambda session: [
                e.comments for e in session.feedback_entries()
                if e.category == pattern and e.rating >= GOOD_RATING and e.comments
            ][:10]
        )

        return InsightContext(
            query_pattern=pattern,
            contextual_hints=_contextual_hints(comments),
            related_insights=comments,
        )

    # ------------------------------------------------------------------
    # Feedback & statistics
    # ------------------------------------------------------------------

    async def record_feedback(
        self,
        prompt: str,
        sql: str,
        feedback: QueryFeedback,
        user_id: str,
    ) -> None:
        entry = FeedbackEntry(
            timestamp=time.time(),
            original_query=prompt,
            generated_sql=sql,
            rating=feedback.to_rating(),
            comments=feedback.comments,
            user_id=user_id,
            feedback_type=feedback.feedback or "neutral",
            category=extract_prompt_pattern(prompt),
        )

        await self._store.run_in_session(lambda session: session.add_feedback(entry))

        logger.info("Recorded feedback %s: rating %d, pattern %s",
                    entry.id, entry.rating, entry.category)

    async def statistics(self) -> LearningStatistics:
        feedback, attempts = await self._store.run_in_session(
            lambda session: (session.feedback_entries(), session.generation_attempts())
        )

        confidences = [a.confidence_score for a in attempts if a.confidence_score > 0]
        popular = Counter(e.category or "unknown" for e in feedback if e.rating >= GOOD_RATING)

        return LearningStatistics(
            total_generations=len(attempts),
            total_feedback_items=len(feedback),
            average_rating=(
                sum(e.rating for e in feedback) / len(feedback) if feedback else 0.0
            ),
            average_confidence=(
                sum(confidences) / len(confidences) if confidences else 0.0
            ),
            unique_users=len({e.user_id for e in feedback}),
            popular_patterns=dict(popular.most_common(10)),
        )


# ---------------------------------------------------------------------------
# Classification helpers
# ---------------------------------------------------------------------------

def extract_prompt_pattern(prompt: str) -> str:
    """Bucket a natural-language prompt into a category key."""
    lower = (prompt or "").lower()

    if _has_any(lower, ("show", "display", "list")):
        return "display_query"
    if _has_any(lower, ("count", "total", "number")):
        return "count_query"
    if _has_any(lower, ("average", "mean", "avg")):
        return "average_query"
    if "sum" in lower:
        return "sum_query"
    if _has_any(lower, ("group", "by")):
        return "group_query"
    if _has_any(lower, ("join", "combine")):
        return "join_query"
    if _has_any(lower, ("filter", "where", "condition")):
        return "filter_query"
    return "general_query"


def extract_sql_pattern(sql: str) -> str:
    """Bucket a SQL statement into a category key by its clauses."""
    upper = (sql or "").upper()

    if "GROUP BY" in upper:
        return "grouped_query"
    if "JOIN" in upper:
        return "joined_query"
    if "UNION" in upper:
        return "union_query"
    if "SUBQUERY" in upper or "(SELECT" in upper:
        return "subquery"
    if "ORDER BY" in upper:
        return "ordered_query"
    if "HAVING" in upper:
        return "having_query"
    return "simple_query"


def extract_keywords(text: str) -> List[str]:
    """Lower-case tokens longer than three characters, minus stop words."""
    return [
        w for w in _KEYWORD_SPLIT_RE.split((text or "").lower())
        if len(w) > 3 and w not in STOP_WORDS
    ]


def _has_any(text: str, words: Iterable[str]) -> bool:
    return any(w in text for w in words)


def _top_keywords(texts: Iterable[str], limit: int) -> List[str]:
    counter: Counter = Counter()
    for text in texts:
        counter.update(extract_keywords(text))
    return [word for word, _count in counter.most_common(limit)]


def _confidence_modifier(good: int, total: int) -> float:
    # Ranges from -0.15 to +0.15
    if total == 0:
        return 0.0
    return (good / total - 0.5) * 0.3


def _suggestion_for_category(category: str, table_name: str) -> Optional[str]:
    templates = {
        "display_query": f"Show me all records from {table_name}",
        "count_query": f"Count the total number of records in {table_name}",
        "average_query": "Calculate the average value of a numeric column",
        "sum_query": "Sum up values in a numeric column",
        "group_query": "Group data by a specific column and show counts",
    }
    return templates.get(category)


def _contextual_hints(comments: Iterable[str]) -> List[str]:
    hints = []
    for comment in comments:
        for fragment in comment.split("."):
            if len(fragment.strip()) > 10:
                hints.append(fragment)
                if len(hints) >= 5:
                    return hints
    return hints
