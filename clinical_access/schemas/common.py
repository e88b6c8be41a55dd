"""Shared schema base classes."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from clinical_access.core.config import settings


class CamelModel(BaseModel):
    """Base for API schemas: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorResponse(BaseModel):
    """Body of every domain error response."""

    detail: str
    error: str


def page_size(size: int | None) -> int:
    """Page size actually served: the default when unset, capped at the maximum."""
    return min(size or settings.default_page_size, settings.max_page_size)


def total_pages(total: int, size: int) -> int:
    return (total + size - 1) // size if size else 0
