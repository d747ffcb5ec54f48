"""Shared Pydantic base with camelCase wire-format serialization."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict


def to_camel(name: str) -> str:
    """Convert snake_case to camelCase for JSON serialization."""
    parts = name.split("_")
    return parts[0] + "".join(w.capitalize() for w in parts[1:])


class CamelModel(BaseModel):
    """Base model for every API request and response body.

    Field names are snake_case in Python and camelCase on the wire; request
    bodies accept either spelling.  FastAPI serialises response models by
    alias, so ``recommended_version_id`` leaves the server as
    ``recommendedVersionId``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )
