"""
Prompt Optimizer
================
Rewrites natural-language prompts before SQL generation, and enriches
generated insights with learned context.

``optimize()`` runs three stages:
  1. Learning augmentation  -- successful patterns, guidelines, mistakes
  2. Rule-based rewriting   -- ``RuleRegistry`` in declared order
  3. Context enhancement    -- schema hints, temporal/aggregation notes

Both public methods are total. A stage that fails leaves the prompt as
it was before that stage and the pipeline stops there.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, List, Optional, Sequence

from adaptive_sql.models import InsightContext, LearningInsights
from adaptive_sql.rules import (
    RuleRegistry,
    contains_aggregation_keywords,
    contains_temporal_keywords,
)
from adaptive_sql.store import LearningStore

logger = logging.getLogger("adaptive_sql.prompt_optimizer")

TEMPORAL_NOTE = " (Note: Use appropriate date/time functions and consider timezone)"
AGGREGATION_NOTE = " (Note: Consider GROUP BY clauses and NULL handling)"

_WORD_SPLIT_RE = re.compile(r"\W+")


class PromptOptimizer:
    """Three-stage prompt rewriting plus insight enrichment.

    Args:
        rules: Rule registry for stage 2 (defaults to the built-in rules).
        store: Store used for schema hints and pattern comments. Each
            lookup opens its own session in a worker thread. ``None``
            disables lookups.
        max_schema_hints: Business tables to mention at most.
        max_pattern_comments: Rated comments to fetch per pattern.
    """

    def __init__(
        self,
        rules: Optional[RuleRegistry] = None,
        store: Optional[LearningStore] = None,
        max_schema_hints: int = 3,
        max_pattern_comments: int = 5,
    ) -> None:
        self.rules = rules if rules is not None else RuleRegistry()
        self._store = store
        self.max_schema_hints = max_schema_hints
        self.max_pattern_comments = max_pattern_comments

    @classmethod
    def from_config(cls, store: Optional[LearningStore] = None, config=None) -> "PromptOptimizer":
        if config is None:
            from adaptive_sql.config import get_config
            config = get_config()
        return cls(
            store=store,
            max_schema_hints=config.optimizer.max_schema_hints,
            max_pattern_comments=config.optimizer.max_pattern_comments,
        )

    # ------------------------------------------------------------------
    # Prompt optimization
    # ------------------------------------------------------------------

    async def optimize(self, prompt: str, insights: LearningInsights) -> str:
        """Run the three-stage pipeline on *prompt*.

        Args:
            prompt: The user's natural-language request.
            insights: Learning signals for this prompt.

        Returns:
            The optimized prompt, or the last good intermediate prompt if
            a stage failed.
        """
        current = prompt

        try:
            current = self.apply_learning_optimizations(current, insights)
        except Exception as e:
            logger.warning("Learning-based optimization failed, using original prompt: %s", e)
            return current

        try:
            current = self.rules.apply(current)
        except Exception as e:
            logger.warning("Rule-based optimization failed: %s", e)
            return current

        try:
            current = await asyncio.to_thread(self.add_context_enhancements, current)
        except Exception as e:
            logger.warning("Context enhancement failed: %s", e)
            return current

        logger.debug(
            "Prompt optimized from %d to %d characters", len(prompt), len(current)
        )
        return current

    @staticmethod
    def apply_learning_optimizations(prompt: str, insights: LearningInsights) -> str:
        if insights.successful_patterns:
            focus = ", ".join(insights.successful_patterns[:3])
            prompt = f"Context: Focus on {focus}. Query: {prompt}"

        if insights.optimization_suggestions:
            guidelines = "; ".join(insights.optimization_suggestions[:2])
            prompt += f" (Guidelines: {guidelines})"

        if insights.common_mistakes:
            mistakes = ", ".join(insights.common_mistakes[:2])
            prompt += f" (Avoid: {mistakes})"

        return prompt

    def add_context_enhancements(self, prompt: str) -> str:
        hints = self._schema_hints(prompt)
        if hints:
            prompt += f" (Schema context: {', '.join(hints[:self.max_schema_hints])})"

        # Applied even when a rule already added similar guidance.
        if contains_temporal_keywords(prompt):
            prompt += TEMPORAL_NOTE
        if contains_aggregation_keywords(prompt):
            prompt += AGGREGATION_NOTE

        return prompt

    def _schema_hints(self, prompt: str) -> List[str]:
        if self._store is None:
            return []

        words = extract_words(prompt)
        try:
            with self._store.session() as session:
                tables = session.find_business_tables(words, limit=self.max_schema_hints)
        except Exception as e:
            logger.warning("Error getting schema hints: %s", e)
            return []

        return [f"{t.table_name} ({t.business_purpose})" for t in tables]

    # ------------------------------------------------------------------
    # Insight enrichment
    # ------------------------------------------------------------------

    async def enhance_insight(
        self,
        base_insight: str,
        context: InsightContext,
        data: Sequence[Any],
    ) -> str:
        """Append learned context and data-quality notes to an insight.

        Args:
            base_insight: Insight text produced by the base service.
            context: Pattern and hints from the learning engine.
            data: The query's result rows.

        Returns:
            The enriched insight, or *base_insight* unchanged on failure.
        """
        try:
            parts = [base_insight]

            if context.contextual_hints:
                parts.append("\n**Additional Context:**\n")
                for hint in context.contextual_hints[:3]:
                    parts.append(f"• {hint.strip()}\n")

            pattern_insights = await asyncio.to_thread(
                self._pattern_insights, context.query_pattern
            )
            if pattern_insights:
                parts.append("\n**Pattern-Specific Insights:**\n")
                for insight in pattern_insights[:2]:
                    parts.append(f"• {insight}\n")

            quality_notes = analyze_data_quality(data)
            if quality_notes:
                parts.append("\n**Data Quality Notes:**\n")
                for note in quality_notes:
                    parts.append(f"• {note}\n")

            return "".join(parts)
        except Exception as e:
            logger.warning("Error enhancing insight, using base insight: %s", e)
            return base_insight

    def _pattern_insights(self, query_pattern: str) -> List[str]:
        if self._store is None:
            return []

        try:
            with self._store.session() as session:
                comments = session.find_pattern_comments(
                    query_pattern, min_rating=4, limit=self.max_pattern_comments
                )
        except Exception as e:
            logger.warning("Error getting pattern-specific insights: %s", e)
            return []

        return [c for c in comments if 20 < len(c) < 200]


def extract_words(text: str) -> List[str]:
    """Lower-case word tokens longer than two characters."""
    return [w for w in _WORD_SPLIT_RE.split(text.lower()) if len(w) > 2]


def analyze_data_quality(data: Sequence[Any]) -> List[str]:
    """Observations about the size and completeness of a result set."""
    notes: List[str] = []

    if len(data) == 0:
        notes.append("No data returned - consider checking filters or data availability")
        return notes

    if len(data) == 1:
        notes.append("Single result returned - this might indicate very specific filtering")
    elif len(data) > 1000:
        notes.append("Large result set returned - consider adding filters for better performance")

    if any("null" in _record_text(record) for record in list(data[:10])):
        notes.append("Some null values detected - consider handling missing data appropriately")

    return notes


def _record_text(record: Any) -> str:
    # JSON so that None renders as "null".
    if isinstance(record, str):
        return record
    try:
        return json.dumps(record, default=str)
    except (TypeError, ValueError):
        return str(record)
