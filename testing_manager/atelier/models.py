"""Pydantic models for Atelier REST API responses."""

from collections.abc import Sequence
from typing import Any

from pydantic import Field

from testing_manager.models.base import WireModel


class AtelierStatus(WireModel):
    """Status block present on every Atelier response."""

    errors: Sequence[Any] = Field(default_factory=list)
    summary: str = ""


class AtelierResult(WireModel):
    """Result block; `content` is rows, lines or names depending on the call."""

    content: Any = None


class AtelierResponse(WireModel):
    """Envelope of an Atelier REST API response."""

    status: AtelierStatus = Field(default_factory=AtelierStatus)
    console: Sequence[str] = Field(default_factory=list)
    result: AtelierResult = Field(default_factory=AtelierResult)

    @property
    def rows(self) -> Sequence[dict[str, Any]]:
        content = self.result.content
        return content if isinstance(content, list) else []
