from __future__ import annotations

from promo_api.core.settings import settings


def page_bounds(page: int | None, page_size: int | None) -> tuple[int, int]:
    """Translate 1-based page parameters into an ``(offset, limit)`` pair."""

    limit = page_size or settings.marketing_default_page_size
    limit = max(1, min(limit, settings.marketing_max_page_size))
    current = max(page or 1, 1)
    return (current - 1) * limit, limit


__all__ = ["page_bounds"]
