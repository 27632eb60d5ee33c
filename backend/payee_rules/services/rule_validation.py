"""Field-level validation of rule create/update payloads."""

from dataclasses import dataclass

from payee_rules.config import settings
from payee_rules.core.exceptions import FieldError, ValidationError
from payee_rules.schemas.matching_rule import RuleEdit
from payee_rules.services.pattern_validator import validate_pattern
from payee_rules.utils.category import sanitize_category


@dataclass(frozen=True)
class ValidRuleEdit:
    """A rule payload that passed validation, category already sanitized."""

    pattern: str
    is_regex: bool
    category: str


def collect_rule_edit_errors(data: RuleEdit) -> list[FieldError]:
    """Return every field error in ``data`` (empty list when valid)."""
    errors: list[FieldError] = []
    pattern_max = settings.rule_pattern_max_length
    category_max = settings.rule_category_max_length

    pattern = data.pattern
    if pattern is None or not pattern.strip():
        errors.append(FieldError("pattern", "Payee pattern is required"))
    else:
        if len(pattern) > pattern_max:
            errors.append(FieldError("pattern", f"Payee pattern cannot exceed {pattern_max} characters"))
        if data.is_regex:
            result = validate_pattern(pattern)
            if not result.is_valid:
                errors.append(FieldError("pattern", result.message))

    category = data.category
    if not category:
        errors.append(FieldError("category", "Category is required"))
    elif not category.strip():
        errors.append(FieldError("category", "Category cannot be whitespace only"))
    else:
        sanitized = sanitize_category(category)
        # separators alone, e.g. " : ", sanitize to nothing
        if not sanitized:
            errors.append(FieldError("category", "Category is required"))
        elif len(sanitized) > category_max:
            errors.append(FieldError("category", f"Category cannot exceed {category_max} characters"))

    return errors


def validate_rule_edit(data: RuleEdit) -> ValidRuleEdit:
    """Validate ``data`` or raise ``ValidationError`` listing all failures."""
    errors = collect_rule_edit_errors(data)
    if errors:
        raise ValidationError(errors)
    return ValidRuleEdit(
        pattern=data.pattern,
        is_regex=data.is_regex,
        category=sanitize_category(data.category),
    )
