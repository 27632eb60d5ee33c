"""Regex pattern validation for payee matching rules.

Regex rules are evaluated with RE2 (``google-re2``), which guarantees matching
in time linear in the input and therefore cannot be driven into catastrophic
backtracking (ReDoS). The price is that RE2 has no backreferences, lookahead
or lookbehind. Those constructs are detected up front by scanning the pattern
so callers get a precise reason, and everything else is left to the RE2
parser.

The validator runs for regex rules only; substring patterns never reach the
regex compiler.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

import re2


class PatternStatus(str, Enum):
    VALID = "valid"
    EMPTY = "empty"
    INVALID_SYNTAX = "invalid_syntax"
    UNSUPPORTED_FEATURE = "unsupported_feature"


class UnsupportedFeature(str, Enum):
    BACKREFERENCES = "backreferences"
    LOOKAHEAD = "lookahead"
    LOOKBEHIND = "lookbehind"


@dataclass(frozen=True)
class PatternValidation:
    """Outcome of validating one pattern."""

    status: PatternStatus
    message: str | None = None
    feature: UnsupportedFeature | None = None

    @property
    def is_valid(self) -> bool:
        return self.status is PatternStatus.VALID


_VALID = PatternValidation(PatternStatus.VALID)


def _options() -> re2.Options:
    options = re2.Options()
    options.case_sensitive = False
    options.log_errors = False
    return options


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str):
    """Compile ``pattern`` case-insensitively with RE2.

    Raises ``re2.error`` when RE2 cannot parse the pattern. Compiled patterns
    are cached since the same rules are evaluated for every transaction.
    """
    return re2.compile(pattern, _options())


def find_unsupported_feature(pattern: str) -> UnsupportedFeature | None:
    """Return the first construct RE2 cannot execute, if any.

    Escapes, ``\\Q...\\E`` quoting and character classes are skipped so that
    e.g. ``\\(?=`` or ``[(?=]`` are not mistaken for lookahead.
    """
    i = 0
    n = len(pattern)
    while i < n:
        ch = pattern[i]

        if ch == "\\":
            nxt = pattern[i + 1] if i + 1 < n else ""
            if nxt and nxt in "123456789":
                return UnsupportedFeature.BACKREFERENCES
            if nxt == "k" and i + 2 < n and pattern[i + 2] in "<{'":
                return UnsupportedFeature.BACKREFERENCES
            if nxt == "Q":
                end = pattern.find("\\E", i + 2)
                i = n if end == -1 else end + 2
                continue
            i += 2
            continue

        if ch == "[":
            i = _skip_character_class(pattern, i)
            continue

        if ch == "(" and pattern.startswith("(?", i):
            rest = pattern[i + 2:i + 4]
            if rest[:1] in ("=", "!"):
                return UnsupportedFeature.LOOKAHEAD
            if rest in ("<=", "<!"):
                return UnsupportedFeature.LOOKBEHIND
            if rest == "P=":
                return UnsupportedFeature.BACKREFERENCES

        i += 1
    return None


def _skip_character_class(pattern: str, start: int) -> int:
    """Return the index just past the character class opened at ``start``."""
    i = start + 1
    n = len(pattern)
    if i < n and pattern[i] == "^":
        i += 1
    # a leading ']' is a literal member
    if i < n and pattern[i] == "]":
        i += 1
    while i < n:
        if pattern[i] == "\\":
            i += 2
            continue
        if pattern[i] == "]":
            return i + 1
        i += 1
    # unterminated class: let the compiler report it
    return n


def validate_pattern(pattern: str | None) -> PatternValidation:
    """Check that ``pattern`` is a regex RE2 accepts.

    Pure: no side effects and no I/O.
    """
    if pattern is None or not pattern.strip():
        return PatternValidation(PatternStatus.EMPTY, "Pattern cannot be empty or whitespace.")

    feature = find_unsupported_feature(pattern)
    if feature is not None:
        return PatternValidation(
            PatternStatus.UNSUPPORTED_FEATURE,
            "Pattern is rejected because rules require the ReDoS-safe (linear-time) regex engine, "
            f"which does not support {feature.value}.",
            feature,
        )

    try:
        compile_pattern(pattern)
    except re2.error as e:
        return PatternValidation(PatternStatus.INVALID_SYNTAX, f"Invalid regex pattern: {e}")

    return _VALID
