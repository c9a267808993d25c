"""Pydantic models for generated integration guides."""

from __future__ import annotations

import json

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

log = structlog.get_logger(__name__)

_DECODER = json.JSONDecoder()


class GuideStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    step_number: int = Field(..., alias="stepNumber")
    title: str
    content: str
    tips: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    code: str | None = None


class TroubleshootingItem(BaseModel):
    issue: str
    solution: str


class Guide(BaseModel):
    """Structured integration guide as requested from the model.

    `content` and `degraded` are only set on the fallback built when the model's
    output could not be parsed.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: str
    subtitle: str | None = None
    complexity: str | None = None
    estimated_time: str | None = Field(default=None, alias="estimatedTime")
    prerequisites: list[str] = Field(default_factory=list)
    steps: list[GuideStep] = Field(default_factory=list)
    verification: list[str] = Field(default_factory=list)
    troubleshooting: list[TroubleshootingItem] = Field(default_factory=list)
    content: str | None = None
    degraded: bool = False

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def fallback_guide(raw: str, *, system: str, device: str, connection: str) -> Guide:
    return Guide(
        title=f"{device} → {system}",
        subtitle=f"via {connection}",
        content=raw,
        degraded=True,
    )


def _first_json_object(raw: str) -> dict | None:
    """Decode the first complete JSON object in `raw`, ignoring any text around it."""
    start = raw.find("{")
    while start != -1:
        try:
            value, _ = _DECODER.raw_decode(raw, start)
        except json.JSONDecodeError:
            start = raw.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = raw.find("{", start + 1)
    return None


def parse_guide(raw: str, *, system: str, device: str, connection: str) -> Guide:
    """Parse the model's JSON answer into a Guide, degrading instead of failing."""
    raw = raw or ""
    data = _first_json_object(raw)
    if data is None:
        log.warning("guide_parse_degraded", reason="no_json_object", raw_chars=len(raw))
        return fallback_guide(raw, system=system, device=device, connection=connection)
    try:
        return Guide.model_validate(data)
    except ValidationError as e:
        log.warning("guide_parse_degraded", reason=type(e).__name__, raw_chars=len(raw))
        return fallback_guide(raw, system=system, device=device, connection=connection)
