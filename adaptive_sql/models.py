"""
Shared Models
=============
Dataclasses and enums passed between the optimizer, the learning engine,
the providers and the generation services.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


# ---------------------------------------------------------------------------
# Learning signals (advisory, never persisted by the adaptive layer)
# ---------------------------------------------------------------------------

@dataclass
class LearningInsights:
    """Signals derived from historical feedback for one prompt.

    Attributes:
        successful_patterns: Keywords that recur in well-rated prompts.
        optimization_suggestions: Free-text guidelines for the generator.
        common_mistakes: Keywords that recur in poorly-rated SQL.
        prompt_pattern: Category key the prompt was classified into.
        confidence_modifier: Additive adjustment for confidence scoring.
        sample_count: Number of feedback rows the insights were built from.
    """

    successful_patterns: List[str] = field(default_factory=list)
    optimization_suggestions: List[str] = field(default_factory=list)
    common_mistakes: List[str] = field(default_factory=list)
    prompt_pattern: str = ""
    confidence_modifier: float = 0.0
    sample_count: int = 0


@dataclass
class InsightContext:
    """Context used to enrich a generated insight."""

    query_pattern: str = ""
    contextual_hints: List[str] = field(default_factory=list)
    related_insights: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------

@dataclass
class GenerationAttempt:
    """Append-only audit record of one SQL generation request/response.

    Attributes:
        user_query: The prompt as the caller sent it.
        optimized_prompt_used: The prompt actually sent to the base service.
        generated_sql: What the base service returned.
        attempted_at: Unix timestamp of the attempt.
        is_successful: Whether non-empty SQL came back.
        confidence_score: Base confidence of the generated SQL.
        user_id: Who made the request.
        generation_time_ms: Wall-clock milliseconds, optimization included.
        id: Short unique identifier.
    """

    user_query: str
    optimized_prompt_used: str
    generated_sql: str
    attempted_at: float = field(default_factory=time.time)
    is_successful: bool = True
    confidence_score: float = 0.0
    user_id: str = "system"
    generation_time_ms: int = 0
    id: str = ""


@dataclass
class FeedbackEntry:
    """A single rated piece of user feedback on generated SQL."""

    id: str = ""
    timestamp: float = 0.0
    original_query: str = ""
    generated_sql: str = ""
    rating: int = 3
    comments: Optional[str] = None
    user_id: str = ""
    feedback_type: str = "neutral"
    category: str = "general_query"


@dataclass
class BusinessTableInfo:
    """Business-level description of a table, used for schema hints."""

    table_name: str
    business_purpose: str = ""


_FEEDBACK_RATINGS = {"positive": 5, "neutral": 3, "negative": 1}


@dataclass
class QueryFeedback:
    """User verdict on a generated query.

    ``feedback`` is one of ``"positive"``, ``"neutral"`` or ``"negative"``;
    an explicit ``rating`` (1-5) takes precedence over the mapped value.
    """

    feedback: str = "neutral"
    comments: Optional[str] = None
    rating: Optional[int] = None

    def to_rating(self) -> int:
        if self.rating is not None:
            return max(1, min(5, int(self.rating)))
        return _FEEDBACK_RATINGS.get((self.feedback or "").lower(), 3)


@dataclass
class LearningStatistics:
    """Summary of what the learning engine has seen so far."""

    total_generations: int = 0
    total_feedback_items: int = 0
    average_rating: float = 0.0
    average_confidence: float = 0.0
    unique_users: int = 0
    popular_patterns: Dict[str, int] = field(default_factory=dict)
    last_updated: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Schema description
# ---------------------------------------------------------------------------

@dataclass
class ColumnMetadata:
    name: str
    data_type: str = "nvarchar"


@dataclass
class TableMetadata:
    name: str
    columns: List[ColumnMetadata] = field(default_factory=list)
    description: str = ""


@dataclass
class SchemaMetadata:
    tables: List[TableMetadata] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

class StreamingResponseKind(str, Enum):
    COMPLETION = "completion"
    SQL_GENERATION = "sql_generation"
    INSIGHT = "insight"
    EXPLANATION = "explanation"


class QueryComplexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


@dataclass
class StreamingResponse:
    """One chunk of a streamed provider response.

    ``is_complete`` is true on exactly the final chunk of a sequence that
    ran to completion; a cancelled sequence has no completing chunk.
    """

    kind: StreamingResponseKind
    content: str
    is_complete: bool = False
    chunk_index: int = 0


@dataclass
class CompletionOptions:
    """Per-request generation settings passed to a provider."""

    system_message: str = ""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    timeout_seconds: Optional[float] = None
