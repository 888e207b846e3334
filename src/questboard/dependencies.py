"""Shared FastAPI helpers."""

from questboard.config import get_settings


def page_limit(limit: int | None) -> int:
    """Apply the default page size and clamp to the configured maximum."""
    settings = get_settings()
    if limit is None:
        return settings.default_page_size
    return min(limit, settings.max_page_size)
