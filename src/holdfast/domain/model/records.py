"""Externally sourced records and their protected attribute."""

from __future__ import annotations

import hashlib
import unicodedata
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime


class AttributeKind(StrEnum):
    IMAGE = "image"
    # generated fallbacks (gradients etc.) never count as an assigned value
    PLACEHOLDER = "gradient"


def normalize_title(title: str) -> str:
    """Casefold, strip punctuation and collapse whitespace."""

    text = unicodedata.normalize("NFKC", title)
    text = text.casefold()
    text = "".join(ch for ch in text if not unicodedata.category(ch).startswith("P"))
    return " ".join(text.split())


def compute_fingerprint(value: str, kind: AttributeKind | str | None) -> str:
    kind_value = str(kind) if kind is not None else ""
    return hashlib.md5(f"{value}-{kind_value}".encode()).hexdigest()  # noqa: S324


@dataclass(frozen=True, slots=True, kw_only=True)
class ExternalRecord:
    """One real-world entity (an event) as delivered by an importer."""

    title: str
    source: str
    occurs_at: datetime
    protected_attribute: str | None = None
    attribute_kind: AttributeKind | None = None
    protected_attribute_fingerprint: str | None = None
    id: str | None = None
    fields: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.occurs_at.tzinfo is None:
            raise ValueError("ExternalRecord.occurs_at must include timezone information")

    @property
    def title_key(self) -> str:
        return normalize_title(self.title)

    @property
    def natural_key(self) -> tuple[str, datetime, str]:
        return (self.title_key, self.occurs_at, self.source)

    @property
    def has_protected_attribute(self) -> bool:
        """True once a real (non-placeholder) attribute value is assigned."""

        if not self.protected_attribute or not self.protected_attribute.strip():
            return False
        return self.attribute_kind is not AttributeKind.PLACEHOLDER


def assign_attribute(
    record: ExternalRecord,
    value: str | None,
    kind: AttributeKind | None = AttributeKind.IMAGE,
) -> ExternalRecord:
    """Intentionally set (or clear, with ``None``) the protected attribute.

    This is the only path that recomputes the fingerprint of a record that
    already carries an attribute.
    """

    if value is None or not value.strip():
        return replace(
            record,
            protected_attribute=None,
            attribute_kind=None,
            protected_attribute_fingerprint=None,
        )
    return replace(
        record,
        protected_attribute=value,
        attribute_kind=kind,
        protected_attribute_fingerprint=compute_fingerprint(value, kind),
    )
