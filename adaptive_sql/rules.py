"""
Prompt Optimization Rules
=========================
Ordered predicate/rewrite pairs applied to a prompt before generation.

Rules run top-to-bottom and each one sees the output of the previous
rule, so the order of ``DEFAULT_RULES`` is part of their behaviour.
The literal checks (``"table"``, ``"from"``, ``"group"``, ``"limit"``,
``"top"``, ``"join"``) are case-sensitive; keyword-family checks are not.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterator, Sequence, Tuple

AGGREGATION_KEYWORDS: Tuple[str, ...] = (
    "count", "sum", "average", "total", "max", "min", "group",
)
TEMPORAL_KEYWORDS: Tuple[str, ...] = (
    "date", "time", "day", "month", "year", "recent",
    "last", "today", "yesterday", "week",
)
ENTITY_KEYWORDS: Tuple[str, ...] = (
    "customer", "order", "product", "user",
    "account", "transaction", "invoice", "payment",
)

_DATE_FORMAT_RE = re.compile(
    r"\d{4}-\d{2}-\d{2}|\d{2}/\d{2}/\d{4}|yyyy|mm|dd", re.IGNORECASE
)


def contains_aggregation_keywords(prompt: str) -> bool:
    lowered = prompt.lower()
    return any(keyword in lowered for keyword in AGGREGATION_KEYWORDS)


def contains_temporal_keywords(prompt: str) -> bool:
    lowered = prompt.lower()
    return any(keyword in lowered for keyword in TEMPORAL_KEYWORDS)


def contains_date_format(prompt: str) -> bool:
    return _DATE_FORMAT_RE.search(prompt) is not None


def contains_multiple_entities(prompt: str) -> bool:
    lowered = prompt.lower()
    return sum(1 for keyword in ENTITY_KEYWORDS if keyword in lowered) > 1


@dataclass(frozen=True)
class OptimizationRule:
    """A named rewrite that fires when its condition holds.

    Attributes:
        name: Stable identifier (e.g. ``"add_table_context"``).
        condition: Pure predicate over the current prompt.
        transform: Pure rewrite of the current prompt.
    """

    name: str
    condition: Callable[[str], bool]
    transform: Callable[[str], str]

    def apply(self, prompt: str) -> str:
        if self.condition(prompt):
            return self.transform(prompt)
        return prompt


DEFAULT_RULES: Tuple[OptimizationRule, ...] = (
    OptimizationRule(
        name="add_table_context",
        condition=lambda p: "table" not in p and "from" not in p,
        transform=lambda p: f"Generate SQL query for the appropriate table: {p}",
    ),
    OptimizationRule(
        name="clarify_aggregation",
        condition=lambda p: contains_aggregation_keywords(p) and "group" not in p,
        transform=lambda p: f"{p} (Include appropriate grouping if needed)",
    ),
    OptimizationRule(
        name="add_limit_guidance",
        condition=lambda p: "show" in p.lower() and "limit" not in p and "top" not in p,
        transform=lambda p: f"{p} (Consider adding LIMIT/TOP for large datasets)",
    ),
    OptimizationRule(
        name="temporal_clarity",
        condition=lambda p: contains_temporal_keywords(p) and not contains_date_format(p),
        transform=lambda p: f"{p} (Specify date format and range clearly)",
    ),
    OptimizationRule(
        name="join_guidance",
        condition=lambda p: contains_multiple_entities(p) and "join" not in p,
        transform=lambda p: f"{p} (Consider relationships between entities)",
    ),
)


class RuleRegistry:
    """Immutable, ordered collection of :class:`OptimizationRule`.

    An empty registry is valid and leaves prompts untouched.

    Args:
        rules: Rules in evaluation order. Defaults to ``DEFAULT_RULES``.
    """

    def __init__(self, rules: Sequence[OptimizationRule] = DEFAULT_RULES) -> None:
        self._rules: Tuple[OptimizationRule, ...] = tuple(rules)

    @property
    def rules(self) -> Tuple[OptimizationRule, ...]:
        return self._rules

    def names(self) -> Tuple[str, ...]:
        return tuple(rule.name for rule in self._rules)

    def apply(self, prompt: str) -> str:
        """Run every rule in order against the evolving prompt."""
        for rule in self._rules:
            prompt = rule.apply(prompt)
        return prompt

    def __iter__(self) -> Iterator[OptimizationRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)
