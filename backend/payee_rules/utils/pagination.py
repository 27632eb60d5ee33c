"""Pagination metadata helpers."""

from math import ceil

from payee_rules.schemas.matching_rule import PaginationMeta


def build_pagination_meta(page: int, per_page: int, total: int) -> PaginationMeta:
    """Compute page counts and 1-based item bounds for a page of ``total`` items."""
    pages = ceil(total / per_page) if total and per_page else 0
    first_item = (page - 1) * per_page + 1 if total else 0
    last_item = min(page * per_page, total) if total else 0
    if first_item > total:
        # past the last page
        first_item = last_item = 0
    return PaginationMeta(
        page=page,
        per_page=per_page,
        total=total,
        pages=pages,
        has_previous=page > 1,
        has_next=page < pages,
        first_item=first_item,
        last_item=last_item,
    )
