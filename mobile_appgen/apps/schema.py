"""Pydantic models for app configuration snapshots.

A configuration snapshot is the opaque structured blob captured at
submission time. The engine only interprets the fields it substitutes
into the template; everything else is carried along untouched.

Keys are accepted in snake_case or in the camelCase used by the app API
(``websiteUrl``, ``androidPackageId``...).
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Reverse-DNS identifier, as accepted by both Gradle and Xcode
PACKAGE_ID_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*(\.[a-zA-Z0-9_]+)+$")

DEFAULT_PRIMARY_COLOR = "#3b82f6"


class _SnapshotModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class FirebaseSettings(_SnapshotModel):
    """Firebase project keys and toggles."""

    api_key: str | None = None
    auth_domain: str | None = None
    project_id: str | None = None
    storage_bucket: str | None = None
    messaging_sender_id: str | None = None
    app_id: str | None = None
    measurement_id: str | None = None
    recaptcha_site_key: str | None = None
    analytics_enabled: bool = False
    crashlytics_enabled: bool = False
    messaging_enabled: bool = False


class AppsFlyerSettings(_SnapshotModel):
    """AppsFlyer attribution settings."""

    dev_key: str | None = None
    app_id: str | None = None


class FeatureFlags(_SnapshotModel):
    """Optional runtime features of the generated app."""

    offline_mode: bool = False
    push_notifications: bool = False
    deep_linking: bool = False
    biometric_auth: bool = False


class Styling(_SnapshotModel):
    """Branding colours and logo."""

    primary_color: str = DEFAULT_PRIMARY_COLOR
    secondary_color: str | None = None
    accent_color: str | None = None
    logo_url: str | None = None


class AppConfigSnapshot(_SnapshotModel):
    """Validated view of an app configuration snapshot.

    Attributes:
        name: Display name of the app.
        website_url: URL the app wraps.
        android_package_id: Android application id (required).
        ios_package_id: iOS bundle id; defaults to the Android id.
        version: Marketing version string.
        app_icon: Local path or URL of the icon asset.
        splash_screen: Local path or URL of the splash asset.
    """

    name: str = Field(min_length=1)
    description: str | None = None
    website_url: str = Field(min_length=1)
    android_package_id: str
    ios_package_id: str | None = None
    version: str = "1.0.0"

    firebase_enabled: bool = False
    firebase_config: FirebaseSettings = Field(default_factory=FirebaseSettings)
    appsflyer_enabled: bool = False
    appsflyer_config: AppsFlyerSettings = Field(default_factory=AppsFlyerSettings)
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    styling: Styling = Field(default_factory=Styling)

    app_icon: str | None = None
    splash_screen: str | None = None

    @field_validator("website_url")
    @classmethod
    def validate_website_url(cls, v: str) -> str:
        """Validate the website URL is http(s)."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("website_url must start with http:// or https://")
        return v

    @field_validator("android_package_id", "ios_package_id")
    @classmethod
    def validate_package_id(cls, v: str | None) -> str | None:
        """Validate reverse-DNS package identifiers."""
        if v is None:
            return v
        if not PACKAGE_ID_PATTERN.match(v):
            raise ValueError(f"invalid package identifier: '{v}'")
        return v

    @property
    def bundle_id(self) -> str:
        """Effective iOS bundle identifier."""
        return self.ios_package_id or self.android_package_id

    @property
    def scheme(self) -> str:
        """iOS scheme name derived from the app name."""
        return re.sub(r"\s+", "", self.name)


__all__ = [
    "DEFAULT_PRIMARY_COLOR",
    "PACKAGE_ID_PATTERN",
    "AppConfigSnapshot",
    "AppsFlyerSettings",
    "FeatureFlags",
    "FirebaseSettings",
    "Styling",
]
