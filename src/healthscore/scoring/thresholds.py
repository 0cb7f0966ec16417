"""
Threshold evaluation: raw metric value → bounded category score.

Manifesto:
    A collector is data, not code. Its scoring behavior is an ordered list
    of :class:`ThresholdRule` rows that operators tune without a deploy.

Architecture:
    ::

        running = 100
        for rule in active rules by evaluation_order:
            if value <op> rule.threshold_value:
                Score   → result = rule.resulting_score, stop
                Cap     → running = min(running, rule.resulting_score)
                Penalty → running = max(0, running - |rule.resulting_score|)
        no match → 100
        result clamped to [0, 100]

    Grouped rule sets evaluate each group against its own named value and
    the category score is the lowest group score.

Features:
    - **Decimal comparisons:** values are compared as ``Decimal`` so 89.99
      never drifts across a 90 threshold
    - **Short-circuit Score rules:** the first matching Score rule is final
    - **Forgiven groups:** exclusion overrides suppress a single check

Tags:
    scoring, thresholds, rules, evaluator

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from healthscore.core.logging import get_logger
from healthscore.core.models import ActionType, ThresholdRule
from healthscore.core.store import HealthStore

logger = get_logger(__name__)

MAX_SCORE = 100
MIN_SCORE = 0
NO_MATCH_SCORE = MAX_SCORE


def to_decimal(value: Any) -> Decimal:
    """Convert a raw metric value to ``Decimal`` without float drift."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Metric value is not numeric: {value!r}") from e


def _clamp(score: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, score))


def evaluate(
    rules: Iterable[ThresholdRule],
    value: Any,
) -> tuple[int, ThresholdRule | None]:
    """Score one raw value against an ordered rule set.

    Inactive rules are ignored. Returns the score and the rule that decided
    it: the short-circuiting Score rule, or the last Cap/Penalty rule that
    matched. ``None`` means no rule matched and the healthy default applied.

    Example:
        >>> rules = [
        ...     ThresholdRule("CPU", "critical", 90, ">=", 40, "Score", 0),
        ...     ThresholdRule("CPU", "warning", 75, ">=", 70, "Score", 1),
        ... ]
        >>> evaluate(rules, 92)[0]
        40
    """
    decimal_value = to_decimal(value)
    ordered = sorted((r for r in rules if r.is_active), key=lambda r: r.evaluation_order)

    running = MAX_SCORE
    matched: ThresholdRule | None = None

    for rule in ordered:
        if not rule.matches(decimal_value):
            continue
        matched = rule
        if rule.action is ActionType.SCORE:
            return _clamp(rule.resulting_score), rule
        if rule.action is ActionType.CAP:
            running = min(running, rule.resulting_score)
        else:
            # Penalties are stored as magnitudes or as negative scores; both subtract.
            running = max(MIN_SCORE, running - abs(rule.resulting_score))

    if matched is None:
        return NO_MATCH_SCORE, None
    return _clamp(running), matched


@dataclass(frozen=True)
class CategoryEvaluation:
    """Outcome of scoring one instance for one collector."""

    score: int
    group_scores: dict[str | None, int] = field(default_factory=dict)
    matched_rules: dict[str | None, str | None] = field(default_factory=dict)
    forgiven_groups: tuple[str, ...] = ()

    def to_metrics(self) -> dict[str, Any]:
        """Per-group breakdown stored alongside the category snapshot."""
        return {
            "groups": {
                (group or "primary"): {
                    "score": score,
                    "matched_rule": self.matched_rules.get(group),
                }
                for group, score in self.group_scores.items()
            },
            "forgiven_groups": list(self.forgiven_groups),
        }


def evaluate_category(
    rules: Iterable[ThresholdRule],
    primary_value: Any,
    named_values: Mapping[str, Any] | None = None,
    *,
    forgiven_groups: Iterable[str] = (),
) -> CategoryEvaluation:
    """Score a collector's full rule set against one instance's metrics.

    Ungrouped rules are evaluated against *primary_value*; each named group
    against ``named_values[group]``. The category score is the minimum of
    the group scores. Groups listed in *forgiven_groups* (case-insensitive)
    are skipped entirely.

    Raises:
        ValueError: a group has active rules but no value was supplied.
    """
    named_values = named_values or {}
    lowered_values = {k.lower(): v for k, v in named_values.items()}
    forgiven = {g.lower() for g in forgiven_groups}

    grouped: dict[str | None, list[ThresholdRule]] = {}
    for rule in rules:
        if not rule.is_active:
            continue
        grouped.setdefault(rule.group, []).append(rule)

    group_scores: dict[str | None, int] = {}
    matched_rules: dict[str | None, str | None] = {}
    skipped: list[str] = []

    for group, group_rules in grouped.items():
        if group is not None and group.lower() in forgiven:
            skipped.append(group)
            continue
        if group is None:
            value = primary_value
        else:
            value = lowered_values.get(group.lower())
        if value is None:
            raise ValueError(f"No metric value for rule group {group or 'primary'!r}")
        score, rule = evaluate(group_rules, value)
        group_scores[group] = score
        matched_rules[group] = rule.name if rule else None

    if not grouped and primary_value is not None:
        # Validate the value even when no rules are configured yet.
        to_decimal(primary_value)

    score = min(group_scores.values()) if group_scores else NO_MATCH_SCORE
    return CategoryEvaluation(
        score=score,
        group_scores=group_scores,
        matched_rules=matched_rules,
        forgiven_groups=tuple(sorted(skipped)),
    )


def reset_thresholds(store: HealthStore, collector_name: str) -> int:
    """Restore every rule of a collector to its default value and re-activate it.

    Returns the number of rules reset.
    """
    rules = store.list_rules(collector_name)
    for rule in rules:
        if rule.default_value is not None:
            rule.threshold_value = rule.default_value
        rule.is_active = True
        store.save_rule(rule)
    logger.info("thresholds_reset", collector=collector_name, rules=len(rules))
    return len(rules)


__all__ = [
    "CategoryEvaluation",
    "MAX_SCORE",
    "MIN_SCORE",
    "NO_MATCH_SCORE",
    "evaluate",
    "evaluate_category",
    "reset_thresholds",
    "to_decimal",
]
