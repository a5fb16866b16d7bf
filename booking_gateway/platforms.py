"""Workspace platforms that support domain-wide delegation.

Each platform maps a capability onto the app that backs it. Supporting a new
platform means adding an entry to ``PLATFORM_APPS``.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class Capability(str, Enum):
    CALENDAR = "calendar"
    CONFERENCING = "conferencing"


@dataclass(frozen=True)
class AppMetadata:
    type: str
    slug: str
    location_type: Optional[str] = None


GOOGLE_CALENDAR = AppMetadata(type="google_calendar", slug="google-calendar")
GOOGLE_MEET = AppMetadata(type="google_video", slug="google-meet", location_type="integrations:google:meet")

GOOGLE_PLATFORM_SLUG = "google"

# Order of capabilities is the order credentials are built in.
PLATFORM_APPS: Dict[str, Dict[Capability, AppMetadata]] = {
    GOOGLE_PLATFORM_SLUG: {
        Capability.CALENDAR: GOOGLE_CALENDAR,
        Capability.CONFERENCING: GOOGLE_MEET,
    },
}


def get_platform_app(platform_slug: str, capability: Capability) -> Optional[AppMetadata]:
    return PLATFORM_APPS.get(platform_slug, {}).get(capability)


def get_app_by_slug(app_slug: str) -> Optional[AppMetadata]:
    for apps in PLATFORM_APPS.values():
        for app in apps.values():
            if app.slug == app_slug:
                return app
    return None
