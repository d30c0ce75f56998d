"""Pydantic models for records arriving from external event feeds."""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class FeedBaseModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class FeedRecordPayload(FeedBaseModel):
    """One feed entry; unknown keys are kept and passed through as extra fields."""

    title: str = Field(min_length=1)
    occurs_at: datetime = Field(validation_alias=AliasChoices("occurs_at", "start", "start_time"))
    source: str | None = None
    image_url: str | None = Field(
        default=None, validation_alias=AliasChoices("image_url", "image")
    )
    image_type: str | None = None

    _normalize_optional = field_validator("source", "image_url", "image_type", mode="before")(
        _blank_to_none
    )

    @property
    def extra_fields(self) -> dict[str, object]:
        return dict(self.model_extra or {})
