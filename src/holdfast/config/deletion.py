"""Account deletion layout: which tables hang off a user and in what order."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

TOMBSTONE_MARKER = "deleted"


class DependentKey(StrEnum):
    """Which user attribute a dependent table is keyed by."""

    USER_ID = "user_id"
    USER_EMAIL = "user_email"


@dataclass(frozen=True, slots=True)
class DependentEntity:
    name: str
    table: str
    column: str
    key: DependentKey = DependentKey.USER_ID
    precount: bool = False


@dataclass(frozen=True, slots=True)
class OwnedEntitySpec:
    """Business records owned by a user; hard or soft deleted per policy."""

    name: str = "providers"
    table: str = "providers"
    id_column: str = "id"
    owner_column: str = "owner_user_id"
    badges_column: str = "badges"
    label_column: str = "name"


# Order matters: rows referencing other user-owned rows go first.
DEFAULT_DEPENDENTS: tuple[DependentEntity, ...] = (
    DependentEntity("funnel_responses", "funnel_responses", "user_email", DependentKey.USER_EMAIL),
    DependentEntity("bookings", "bookings", "user_email", DependentKey.USER_EMAIL),
    DependentEntity("change_requests", "provider_change_requests", "owner_user_id"),
    DependentEntity("job_posts", "provider_job_posts", "owner_user_id"),
    DependentEntity("notifications", "user_notifications", "user_id"),
    DependentEntity("dismissed_notifications", "dismissed_notifications", "user_id"),
    DependentEntity("saved_events", "user_saved_events", "user_id", precount=True),
    DependentEntity("saved_businesses", "saved_providers", "user_id", precount=True),
    DependentEntity("coupon_redemptions", "coupon_redemptions", "user_id", precount=True),
    DependentEntity("calendar_events", "calendar_events", "created_by_user_id", precount=True),
    DependentEntity(
        "business_applications", "business_applications", "email", DependentKey.USER_EMAIL
    ),
    DependentEntity("event_flags", "event_flags", "user_id"),
    DependentEntity("event_votes", "event_votes", "user_id"),
    DependentEntity("email_preferences", "email_preferences", "user_id"),
)


@dataclass(frozen=True, slots=True)
class DeletionConfig:
    dependents: tuple[DependentEntity, ...] = DEFAULT_DEPENDENTS
    owned: OwnedEntitySpec = OwnedEntitySpec()
    profile_table: str = "profiles"
    profile_id_column: str = "id"
    profile_email_column: str = "email"
    tombstone_marker: str = TOMBSTONE_MARKER


def get_deletion_config() -> DeletionConfig:
    return DeletionConfig()
