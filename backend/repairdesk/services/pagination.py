# Overview: Shared page/limit handling for list endpoints.

from __future__ import annotations

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


def paginate(query, page: int | None = None, limit: int | None = None) -> tuple[list, dict]:
    """
    Apply offset/limit to an ordered query.

    Returns (rows, envelope). `limit` is clamped to 1..MAX_LIMIT and `page`
    to >= 1, so bad query-string values never produce an error.
    """
    limit = DEFAULT_LIMIT if limit is None else max(1, min(limit, MAX_LIMIT))
    page = max(page or 1, 1)

    total = query.order_by(None).count()
    total_pages = (total + limit - 1) // limit if total > 0 else 0

    rows = query.offset((page - 1) * limit).limit(limit).all()
    envelope = {
        "current_page": page,
        "total_pages": total_pages,
        "total_records": total,
        "records_per_page": limit,
    }
    return rows, envelope
