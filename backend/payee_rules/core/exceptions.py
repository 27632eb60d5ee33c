"""Domain exceptions raised by the rule services.

These carry plain data only; ``payee_rules.main`` maps them onto HTTP
responses.
"""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class FieldError:
    """A single field-level validation failure."""

    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class ValidationError(Exception):
    """One or more fields of a request failed validation."""

    def __init__(self, errors: list[FieldError]):
        self.errors = list(errors)
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in self.errors) or "Validation error")

    @property
    def fields(self) -> set[str]:
        return {e.field for e in self.errors}


class NotFoundError(Exception):
    def __init__(self, resource: str = "Resource", key: UUID | str | None = None):
        self.resource = resource
        self.key = key
        if key is None:
            message = f"{resource} not found"
        else:
            message = f"{resource} with key '{key}' was not found."
        super().__init__(message)


class RuleNotFoundError(NotFoundError):
    def __init__(self, key: UUID | str):
        super().__init__("Payee matching rule", key)


class MatchEngineError(Exception):
    """A stored regex pattern could not be evaluated at match time.

    Raised out of the match engine and never suppressed: the batch that hit
    it is aborted before any usage statistics are written.
    """

    def __init__(self, rule_key: UUID | str | None, pattern: str, reason: str):
        self.rule_key = rule_key
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Rule '{rule_key}' has a pattern the regex engine cannot evaluate: {reason}")
