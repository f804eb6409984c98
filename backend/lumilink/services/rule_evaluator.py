"""
backend/lumilink/services/rule_evaluator.py

Purpose:
    Pure qualification checks for badge rules against a metric snapshot, plus
    the progress figures shown next to badges a user has not earned yet.
    No I/O: identical inputs always give identical results.

Dependencies:
    - lumilink.models.badge
    - lumilink.models.metric
"""

from __future__ import annotations

import operator
from collections.abc import Callable

from lumilink.models.badge import BadgeDefinition, BadgeRule, MetricThreshold, RuleGroup
from lumilink.models.metric import MetricSnapshot

_OPS: dict[str, Callable[[float, float], bool]] = {
    ">=": operator.ge,
    ">": operator.gt,
    "==": operator.eq,
    "<=": operator.le,
    "<": operator.lt,
}


def evaluate(definition: BadgeDefinition, snapshot: MetricSnapshot) -> bool:
    """True when the snapshot satisfies the definition's rule.

    Manual-only badges never qualify through evaluation.
    """
    if definition.manual_only or definition.rule is None:
        return False
    return evaluate_rule(definition.rule, snapshot)


def evaluate_rule(rule: BadgeRule, snapshot: MetricSnapshot) -> bool:
    if isinstance(rule, MetricThreshold):
        return _OPS[rule.op](snapshot.get(rule.metric), float(rule.value))
    if rule.mode == "all":
        return all(evaluate_rule(c, snapshot) for c in rule.conditions)
    return any(evaluate_rule(c, snapshot) for c in rule.conditions)


def progress_pct(rule: BadgeRule, snapshot: MetricSnapshot) -> float:
    """Completion percentage in [0, 100].

    Upward thresholds scale linearly towards the target; other comparisons are
    all-or-nothing. ``all`` groups report their weakest condition, ``any``
    groups their strongest.
    """
    if isinstance(rule, MetricThreshold):
        if evaluate_rule(rule, snapshot):
            return 100.0
        if rule.op in (">=", ">") and rule.value > 0:
            current = max(0.0, snapshot.get(rule.metric))
            return round(min(99.99, current / float(rule.value) * 100), 2)
        return 0.0
    parts = [progress_pct(c, snapshot) for c in rule.conditions]
    return min(parts) if rule.mode == "all" else max(parts)


def primary_threshold(rule: BadgeRule | None) -> MetricThreshold | None:
    """The first leaf threshold of a rule, used for current/target display."""
    if rule is None:
        return None
    if isinstance(rule, MetricThreshold):
        return rule
    for condition in rule.conditions:
        found = primary_threshold(condition)
        if found is not None:
            return found
    return None


def describe_rule(rule: BadgeRule) -> str:
    if isinstance(rule, MetricThreshold):
        value = int(rule.value) if float(rule.value).is_integer() else rule.value
        return f"{rule.metric} {rule.op} {value}"
    joiner = " and " if rule.mode == "all" else " or "
    inner = joiner.join(
        f"({describe_rule(c)})" if isinstance(c, RuleGroup) else describe_rule(c)
        for c in rule.conditions
    )
    return inner
