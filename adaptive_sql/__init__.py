"""
Adaptive SQL - Unified Package
==============================
Feedback-driven prompt optimization and provider selection for
natural-language-to-SQL generation, built on LlamaIndex LLMs.
"""

from adaptive_sql.config import AdaptiveConfig, get_config, reload_config
from adaptive_sql.adaptive import AdaptiveSQLService
from adaptive_sql.generation import (
    EmptyCompletionError,
    GenerationService,
    ProviderGenerationService,
)
from adaptive_sql.learning import FeedbackLearningEngine, LearningEngine
from adaptive_sql.prompt_optimizer import PromptOptimizer
from adaptive_sql.rules import DEFAULT_RULES, OptimizationRule, RuleRegistry
from adaptive_sql.providers import (
    AzureOpenAIProvider,
    FallbackProvider,
    OpenAIProvider,
    ProviderDescriptor,
    ProviderError,
    ProviderFactory,
    ProviderNotConfiguredError,
    SQLProvider,
    UnknownProviderError,
)
from adaptive_sql.store import LearningStore, StoreSession
from adaptive_sql.confidence import calculate_confidence, confidence_label
from adaptive_sql.resilience import CircuitBreaker, CircuitBreakerOpen, retry_async
from adaptive_sql.observability import (
    JsonFormatter,
    MetricsCollector,
    StructuredLogger,
    get_logger,
    get_metrics,
    initialize_observability,
    setup_file_logging,
)
from adaptive_sql.models import (
    BusinessTableInfo,
    ColumnMetadata,
    CompletionOptions,
    FeedbackEntry,
    GenerationAttempt,
    InsightContext,
    LearningInsights,
    LearningStatistics,
    QueryComplexity,
    QueryFeedback,
    SchemaMetadata,
    StreamingResponse,
    StreamingResponseKind,
    TableMetadata,
)


__all__ = [
    # Core
    "AdaptiveSQLService",
    "AdaptiveConfig",
    "get_config",
    "reload_config",
    # Generation
    "GenerationService",
    "ProviderGenerationService",
    "EmptyCompletionError",
    # Learning
    "LearningEngine",
    "FeedbackLearningEngine",
    # Prompt optimization
    "PromptOptimizer",
    "RuleRegistry",
    "OptimizationRule",
    "DEFAULT_RULES",
    # Providers
    "SQLProvider",
    "OpenAIProvider",
    "AzureOpenAIProvider",
    "FallbackProvider",
    "ProviderFactory",
    "ProviderDescriptor",
    "ProviderError",
    "UnknownProviderError",
    "ProviderNotConfiguredError",
    # Storage
    "LearningStore",
    "StoreSession",
    # Confidence
    "calculate_confidence",
    "confidence_label",
    # Resilience
    "CircuitBreaker",
    "CircuitBreakerOpen",
    "retry_async",
    # Observability
    "JsonFormatter",
    "MetricsCollector",
    "StructuredLogger",
    "get_logger",
    "get_metrics",
    "initialize_observability",
    "setup_file_logging",
    # Models
    "BusinessTableInfo",
    "ColumnMetadata",
    "CompletionOptions",
    "FeedbackEntry",
    "GenerationAttempt",
    "InsightContext",
    "LearningInsights",
    "LearningStatistics",
    "QueryComplexity",
    "QueryFeedback",
    "SchemaMetadata",
    "StreamingResponse",
    "StreamingResponseKind",
    "TableMetadata",
]
