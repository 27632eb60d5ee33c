"""Pure payee matching: pick the single winning rule for a payee.

Precedence, applied over every rule that matches the payee:

1. any regex match beats any substring match;
2. among regex matches, the first in list order wins;
3. among substring matches, the longest pattern wins, ties going to the
   first in list order.

"List order" is recency: callers hand over a ``RecencyOrderedRules``, i.e.
rules sorted by ``modified_at`` newest first, so the most recently edited
rule wins every tie. The engine itself never sorts.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime
from operator import attrgetter
from typing import TYPE_CHECKING, overload
from uuid import UUID

import re2

from payee_rules.core.exceptions import MatchEngineError
from payee_rules.services.pattern_validator import compile_pattern

if TYPE_CHECKING:
    from payee_rules.models.matching_rule import MatchingRule


@dataclass(frozen=True)
class RuleSnapshot:
    """Immutable copy of the fields matching needs, detached from any session."""

    key: UUID
    pattern: str
    is_regex: bool
    category: str
    modified_at: datetime

    @classmethod
    def from_model(cls, rule: MatchingRule) -> RuleSnapshot:
        return cls(
            key=rule.key,
            pattern=rule.pattern,
            is_regex=rule.is_regex,
            category=rule.category,
            modified_at=rule.modified_at,
        )


class RecencyOrderedRules(Sequence[RuleSnapshot]):
    """Rules ordered by ``modified_at`` descending.

    Constructing one from an already-ordered iterable checks the order and
    raises ``ValueError`` otherwise; use ``RecencyOrderedRules.sort`` to order
    an arbitrary collection. Rules with equal ``modified_at`` keep the order
    they were given in.
    """

    __slots__ = ("_rules",)

    def __init__(self, rules: Iterable[RuleSnapshot] = ()):
        rules = tuple(rules)
        for newer, older in zip(rules, rules[1:]):
            if newer.modified_at < older.modified_at:
                raise ValueError("rules must be ordered by modified_at, newest first")
        self._rules = rules

    @classmethod
    def sort(cls, rules: Iterable[RuleSnapshot]) -> RecencyOrderedRules:
        return cls(sorted(rules, key=attrgetter("modified_at"), reverse=True))

    @overload
    def __getitem__(self, index: int) -> RuleSnapshot: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[RuleSnapshot, ...]: ...

    def __getitem__(self, index):
        return self._rules[index]

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[RuleSnapshot]:
        return iter(self._rules)

    def __repr__(self) -> str:
        return f"RecencyOrderedRules({len(self._rules)} rules)"


def _regex_matches(payee: str, rule: RuleSnapshot) -> bool:
    # Patterns were validated on write; a failure here means the stored rule
    # and the engine disagree, which must not be mistaken for "no match".
    try:
        compiled = compile_pattern(rule.pattern)
    except re2.error as e:
        raise MatchEngineError(rule.key, rule.pattern, str(e)) from e
    return compiled.search(payee) is not None


def find_best_rule(payee: str | None, rules: RecencyOrderedRules) -> RuleSnapshot | None:
    """Return the winning rule for ``payee``, or None when nothing matches.

    Raises ``MatchEngineError`` if a regex rule cannot be evaluated.
    """
    if not isinstance(rules, RecencyOrderedRules):
        raise TypeError("rules must be a RecencyOrderedRules")
    if payee is None or not payee.strip():
        return None

    # per-character case mapping; no full folding, so "ss" does not match "ß"
    payee_lower = payee.lower()
    best_regex: RuleSnapshot | None = None
    best_substring: RuleSnapshot | None = None

    for rule in rules:
        if rule.is_regex:
            # first regex match wins; later regex rules need not be evaluated
            if best_regex is None and _regex_matches(payee, rule):
                best_regex = rule
        elif best_regex is None:
            if best_substring is not None and len(rule.pattern) <= len(best_substring.pattern):
                continue
            if rule.pattern and rule.pattern.lower() in payee_lower:
                best_substring = rule

    return best_regex or best_substring


def find_best_match(payee: str | None, rules: RecencyOrderedRules) -> str | None:
    """Return the category of the winning rule for ``payee``, or None."""
    rule = find_best_rule(payee, rules)
    return rule.category if rule is not None else None
