"""Template customization for a job workspace.

This module handles:
- Validating the configuration snapshot before anything is run
- Rewriting the Capacitor configuration (TypeScript or JSON form)
- Updating the `capacitor` section of package.json
- Regenerating the HTML entry point for the wrapped website
- Replacing `{{TOKEN}}` placeholders across the known file set

Every edit writes the same bytes when applied twice, so customizing an
already customized workspace is a no-op.
"""

from __future__ import annotations

import html
import json
import logging
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from mobile_appgen.apps.schema import AppConfigSnapshot

logger = logging.getLogger(__name__)

DEFAULT_WEB_DIR = "www"

# Files scanned for {{TOKEN}} placeholders, relative to the workspace
TOKEN_FILE_GLOBS = [
    "capacitor.config.ts",
    "capacitor.config.json",
    "src/**/*.js",
    "src/**/*.html",
    "src/**/*.json",
    "src/**/*.xml",
    "src/**/*.plist",
    "android/**/strings.xml",
    "ios/App/App/Info.plist",
]

CAPACITOR_CONFIG_NAMES = ("capacitor.config.ts", "capacitor.config.json")

TOKEN_PATTERN = re.compile(r"\{\{\s*([A-Z][A-Z0-9_]*)\s*\}\}")

# Single- or double-quoted string literal, honouring backslash escapes
STRING_LITERAL = r"""(?:'(?:[^'\\\n]|\\.)*'|"(?:[^"\\\n]|\\.)*")"""

INDEX_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0, viewport-fit=cover">
    <title>{title}</title>
    <meta http-equiv="refresh" content="0; url={url}">
</head>
<body>
    <p>Redirecting to {url}...</p>
</body>
</html>
"""


class CustomizationError(Exception):
    """Raised when the template cannot be customized for a snapshot."""

    def __init__(self, message: str, code: str = "precondition_failed") -> None:
        super().__init__(message)
        self.code = code


def validate_snapshot(snapshot: dict[str, Any]) -> AppConfigSnapshot:
    """Validate a raw configuration snapshot.

    Raises:
        CustomizationError: Listing every missing or invalid field.
    """
    try:
        return AppConfigSnapshot.model_validate(snapshot)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise CustomizationError(f"Invalid app configuration: {problems}") from e


def _flag(value: bool) -> str:
    return "true" if value else "false"


def build_token_values(config: AppConfigSnapshot) -> dict[str, str]:
    """Map every known placeholder to its value for a snapshot.

    Absent optional values map to an empty string, `false`, or the default
    colour, so no placeholder survives substitution.
    """
    firebase = config.firebase_config if config.firebase_enabled else None
    appsflyer = config.appsflyer_config if config.appsflyer_enabled else None
    styling = config.styling

    def fb(attr: str) -> str:
        return (getattr(firebase, attr) or "") if firebase is not None else ""

    return {
        "APP_NAME": config.name,
        "APP_DESCRIPTION": config.description or "",
        "APP_VERSION": config.version,
        "PACKAGE_ID": config.android_package_id,
        "IOS_BUNDLE_ID": config.bundle_id,
        "WEBSITE_URL": config.website_url,
        "FIREBASE_ENABLED": _flag(firebase is not None),
        "FIREBASE_API_KEY": fb("api_key"),
        "FIREBASE_AUTH_DOMAIN": fb("auth_domain"),
        "FIREBASE_PROJECT_ID": fb("project_id"),
        "FIREBASE_STORAGE_BUCKET": fb("storage_bucket"),
        "FIREBASE_MESSAGING_SENDER_ID": fb("messaging_sender_id"),
        "FIREBASE_APP_ID": fb("app_id"),
        "FIREBASE_MEASUREMENT_ID": fb("measurement_id"),
        "RECAPTCHA_SITE_KEY": fb("recaptcha_site_key"),
        "FIREBASE_ANALYTICS_ENABLED": _flag(
            firebase is not None and firebase.analytics_enabled
        ),
        "FIREBASE_CRASHLYTICS_ENABLED": _flag(
            firebase is not None and firebase.crashlytics_enabled
        ),
        "FIREBASE_MESSAGING_ENABLED": _flag(
            firebase is not None and firebase.messaging_enabled
        ),
        "APPSFLYER_ENABLED": _flag(appsflyer is not None),
        "APPSFLYER_DEV_KEY": (appsflyer.dev_key or "") if appsflyer else "",
        "APPSFLYER_APP_ID": (appsflyer.app_id or "") if appsflyer else "",
        "FEATURE_OFFLINE_MODE": _flag(config.features.offline_mode),
        "FEATURE_PUSH_NOTIFICATIONS": _flag(config.features.push_notifications),
        "FEATURE_DEEP_LINKING": _flag(config.features.deep_linking),
        "FEATURE_BIOMETRIC_AUTH": _flag(config.features.biometric_auth),
        "PRIMARY_COLOR": styling.primary_color,
        "SECONDARY_COLOR": styling.secondary_color or styling.primary_color,
        "ACCENT_COLOR": styling.accent_color or styling.primary_color,
        "LOGO_URL": styling.logo_url or "",
    }


def _ts_string(value: str) -> str:
    """Quote a value as a single-quoted TypeScript string literal."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _set_ts_property(content: str, key: str, value: str) -> str:
    """Replace the first `key: '...'` assignment in a TypeScript object."""
    pattern = re.compile(rf"(?<![A-Za-z0-9_]){key}:\s*{STRING_LITERAL}")
    return pattern.sub(lambda _: f"{key}: {_ts_string(value)}", content, count=1)


def _set_ts_leading_property(content: str, block: str, key: str, value: str) -> str:
    """Set `key` as the first property of the `block: {` object."""
    pattern = re.compile(
        rf"(?<![A-Za-z0-9_])({block}:\s*\{{)(\s*{key}:\s*{STRING_LITERAL},)?"
    )
    return pattern.sub(
        lambda m: f"{m.group(1)}\n    {key}: {_ts_string(value)},", content, count=1
    )


def update_capacitor_config_ts(
    path: Path, config: AppConfigSnapshot, web_dir: str
) -> None:
    """Rewrite appId, appName, webDir, server.url and the iOS block."""
    content = path.read_text(encoding="utf-8")
    content = _set_ts_property(content, "appId", config.android_package_id)
    content = _set_ts_property(content, "appName", config.name)
    content = _set_ts_property(content, "webDir", web_dir)

    if re.search(r"(?<![A-Za-z0-9_])server:\s*\{", content):
        content = _set_ts_leading_property(content, "server", "url", config.website_url)

    if re.search(r"(?<![A-Za-z0-9_])ios:\s*\{", content):
        content = _set_ts_leading_property(content, "ios", "bundleId", config.bundle_id)
        content = _set_ts_property(content, "scheme", config.scheme)
    else:
        ios_block = (
            "\n  ios: {\n"
            f"    bundleId: {_ts_string(config.bundle_id)},\n"
            f"    scheme: {_ts_string(config.scheme)},\n"
            "  },"
        )
        content, count = re.subn(
            r"(CapacitorConfig\s*=\s*\{|export default\s*\{)",
            lambda m: m.group(1) + ios_block,
            content,
            count=1,
        )
        if count == 0:
            logger.warning("Could not locate config object in %s", path)

    path.write_text(content, encoding="utf-8")


def _write_json(path: Path, data: Any) -> None:
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise CustomizationError(f"Invalid JSON in {path.name}: {e}") from e


def update_capacitor_config_json(
    path: Path, config: AppConfigSnapshot, web_dir: str
) -> None:
    """Rewrite the JSON form of the Capacitor configuration."""
    data = _read_json(path)
    if not isinstance(data, dict):
        raise CustomizationError(f"{path.name} must contain a JSON object")
    data["appId"] = config.android_package_id
    data["appName"] = config.name
    data["webDir"] = web_dir
    data.setdefault("server", {})["url"] = config.website_url
    ios = data.setdefault("ios", {})
    ios["scheme"] = config.scheme
    ios["bundleId"] = config.bundle_id
    _write_json(path, data)


def update_package_json(path: Path, config: AppConfigSnapshot, web_dir: str) -> None:
    """Update the `capacitor` section of package.json, if present."""
    data = _read_json(path)
    if not isinstance(data, dict) or not isinstance(data.get("capacitor"), dict):
        return
    data["capacitor"]["appId"] = config.android_package_id
    data["capacitor"]["appName"] = config.name
    data["capacitor"]["webDir"] = web_dir
    _write_json(path, data)


def render_index_html(config: AppConfigSnapshot) -> str:
    """Render the redirect page that loads the wrapped website."""
    return INDEX_HTML_TEMPLATE.format(
        title=html.escape(config.name),
        url=html.escape(config.website_url, quote=True),
    )


def iter_token_files(workspace: Path) -> list[Path]:
    """Return the files eligible for placeholder substitution."""
    seen: set[Path] = set()
    files: list[Path] = []
    for pattern in TOKEN_FILE_GLOBS:
        for path in sorted(workspace.glob(pattern)):
            if path.is_file() and path not in seen:
                seen.add(path)
                files.append(path)
    return files


def replace_tokens(content: str, values: dict[str, str]) -> tuple[str, set[str]]:
    """Replace `{{TOKEN}}` placeholders.

    Returns:
        Tuple of (new content, names of unknown tokens that were blanked).
    """
    unknown: set[str] = set()

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in values:
            return values[name]
        unknown.add(name)
        return ""

    return TOKEN_PATTERN.sub(_sub, content), unknown


def check_template(root: Path) -> None:
    """Check that a template (or workspace) has a Capacitor configuration.

    Raises:
        CustomizationError: If neither capacitor.config.ts nor
            capacitor.config.json exists.
    """
    if not any((root / name).is_file() for name in CAPACITOR_CONFIG_NAMES):
        raise CustomizationError(
            f"No capacitor.config.ts or capacitor.config.json in {root}"
        )


def leftover_tokens(workspace: Path) -> list[tuple[str, str]]:
    """Find placeholders still present in the token file set.

    Returns:
        List of (relative path, token name) pairs.
    """
    leftovers: list[tuple[str, str]] = []
    for path in iter_token_files(workspace):
        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            continue
        rel = path.relative_to(workspace).as_posix()
        leftovers.extend((rel, m.group(1)) for m in TOKEN_PATTERN.finditer(content))
    return leftovers


class TemplateCustomizer:
    """Applies an app configuration snapshot to a workspace.

    Args:
        web_dir: Web asset directory written into the Capacitor config.
    """

    def __init__(self, web_dir: str = DEFAULT_WEB_DIR) -> None:
        self.web_dir = web_dir

    def customize(self, workspace: Path, snapshot: dict[str, Any]) -> list[str]:
        """Customize a workspace for a snapshot.

        Args:
            workspace: Job workspace (a copy of the template).
            snapshot: Raw configuration snapshot.

        Returns:
            Relative paths of the files that were rewritten.

        Raises:
            CustomizationError: If the snapshot is invalid, the Capacitor
                configuration is missing, or placeholders remain.
        """
        config = validate_snapshot(snapshot)
        changed: list[str] = []

        check_template(workspace)
        ts_config = workspace / "capacitor.config.ts"
        json_config = workspace / "capacitor.config.json"
        if ts_config.is_file():
            update_capacitor_config_ts(ts_config, config, self.web_dir)
            changed.append(ts_config.name)
        if json_config.is_file():
            update_capacitor_config_json(json_config, config, self.web_dir)
            changed.append(json_config.name)

        package_json = workspace / "package.json"
        if package_json.is_file():
            update_package_json(package_json, config, self.web_dir)
            changed.append(package_json.name)

        index_html = workspace / "src" / "index.html"
        index_html.parent.mkdir(parents=True, exist_ok=True)
        index_html.write_text(render_index_html(config), encoding="utf-8")
        changed.append("src/index.html")

        values = build_token_values(config)
        for path in iter_token_files(workspace):
            try:
                content = path.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                logger.debug("Skipping non-text file %s", path)
                continue
            new_content, unknown = replace_tokens(content, values)
            rel = path.relative_to(workspace).as_posix()
            for name in sorted(unknown):
                logger.warning("Unknown placeholder {{%s}} in %s, left empty", name, rel)
            if new_content != content:
                path.write_text(new_content, encoding="utf-8")
                if rel not in changed:
                    changed.append(rel)

        leftovers = leftover_tokens(workspace)
        if leftovers:
            listing = ", ".join(f"{p}:{t}" for p, t in leftovers)
            raise CustomizationError(f"Unresolved placeholders remain: {listing}")

        logger.info("Customized %d files in %s", len(changed), workspace)
        return changed


__all__ = [
    "CAPACITOR_CONFIG_NAMES",
    "DEFAULT_WEB_DIR",
    "TOKEN_FILE_GLOBS",
    "CustomizationError",
    "TemplateCustomizer",
    "build_token_values",
    "check_template",
    "iter_token_files",
    "leftover_tokens",
    "render_index_html",
    "replace_tokens",
    "validate_snapshot",
]
