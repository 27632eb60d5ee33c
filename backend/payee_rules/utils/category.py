"""Category label normalization.

Categories are free text; ``:`` separates hierarchy levels
("Shopping:Online"). Every category is sanitized before it is stored so that
rules and transactions agree on spelling.
"""

import re

HIERARCHY_SEPARATOR = ":"

_WHITESPACE_RUN_RE = re.compile(r"\s+")


def sanitize_category(category: str | None) -> str:
    """Normalize a raw category label.

    - trims the label and every hierarchy term
    - collapses internal whitespace runs to a single space
    - removes whitespace around ``:`` and drops empty terms

    Examples:
        "  Shopping : Online  " → "Shopping:Online"
        "Home    and Garden"   → "Home and Garden"
        "Home: "               → "Home"
        "   "                  → ""
    """
    if category is None or not category.strip():
        return ""

    terms = []
    for term in category.split(HIERARCHY_SEPARATOR):
        term = _WHITESPACE_RUN_RE.sub(" ", term).strip()
        if term:
            terms.append(term)
    return HIERARCHY_SEPARATOR.join(terms)
