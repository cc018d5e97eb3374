"""
Confidence Scoring
==================
Heuristic confidence for generated SQL, before any learning-based
adjustment.
"""

from typing import Tuple


def calculate_confidence(natural_language_query: str, generated_sql: str) -> float:
    """Score how plausible *generated_sql* is as an answer.

    Starts at 0.8 and adds 0.1 each for a ``SELECT``, a ``FROM`` and the
    absence of ``ERROR`` (all case-insensitive), capped at 1.0.

    Args:
        natural_language_query: The question that was asked.
        generated_sql: SQL produced for it.

    Returns:
        Confidence in ``[0.0, 1.0]``.
    """
    sql_upper = (generated_sql or "").upper()
    score = 0.8

    if "SELECT" in sql_upper:
        score += 0.1
    if "FROM" in sql_upper:
        score += 0.1
    if "ERROR" not in sql_upper:
        score += 0.1

    return min(1.0, score)


def confidence_label(confidence: float) -> Tuple[str, str]:
    """Map a confidence score to a label and a short explanation."""
    if confidence >= 0.85:
        return "VERY HIGH", "Generated SQL closely matches known-good patterns"
    if confidence >= 0.70:
        return "HIGH", "Generated SQL looks well-formed"
    if confidence >= 0.50:
        return "MEDIUM", "Generated SQL should be reviewed before use"
    if confidence >= 0.30:
        return "LOW", "Generated SQL resembles patterns users rated poorly"
    return "VERY LOW", "Generated SQL is unlikely to answer the question"
