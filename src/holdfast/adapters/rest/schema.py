"""Pydantic models for error payloads returned by the REST store and auth API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator

from holdfast.domain.ports import StoreFailure


def _to_text(value: object) -> object:
    if value is None or isinstance(value, str):
        return value
    return str(value)


class RestBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ErrorPayload(RestBaseModel):
    """Union of the PostgREST error shape and the auth admin error shape."""

    code: str | None = None
    message: str | None = None
    details: str | None = None
    hint: str | None = None
    # auth API variants
    msg: str | None = None
    error: str | None = None
    error_code: str | None = None
    error_description: str | None = None

    _normalize_text = field_validator("code", "details", "hint", "error_code", mode="before")(
        _to_text
    )

    def to_failure(self, *, status: int, fallback: str) -> StoreFailure:
        # the auth API reports the HTTP status as a numeric ``code``
        code = self.error_code if self.code is None or self.code.isdigit() else self.code
        message = (
            self.message or self.msg or self.error_description or self.error or fallback
        )
        return StoreFailure(
            message=message,
            code=code,
            status=status,
            detail=self.details,
            hint=self.hint,
        )
