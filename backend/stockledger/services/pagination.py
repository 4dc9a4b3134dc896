# Overview: Page/offset handling for history and transfer listings.

from __future__ import annotations

import math

from flask import current_app


def page_params(page: int | None, per_page: int | None) -> tuple[int, int]:
    """Clamp page >= 1 and per_page into [1, MAX_PAGE_SIZE]."""
    default_size = current_app.config.get("HISTORY_PAGE_SIZE", 15)
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)

    page = max(1, int(page or 1))
    per_page = int(per_page or default_size)
    per_page = max(1, min(per_page, max_size))
    return page, per_page


def paginate(query, *, key: str, page: int | None = None, per_page: int | None = None) -> dict:
    page, per_page = page_params(page, per_page)
    total = query.order_by(None).count()
    items = query.offset((page - 1) * per_page).limit(per_page).all()
    return {
        key: items,
        "page": page,
        "per_page": per_page,
        "total": total,
        "pages": math.ceil(total / per_page) if total else 0,
    }
