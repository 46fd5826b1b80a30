"""Tests for template/customize.py module."""

import json
import shutil
from pathlib import Path

import pytest

from mobile_appgen.apps.schema import AppConfigSnapshot
from mobile_appgen.template.customize import (
    CustomizationError,
    TemplateCustomizer,
    build_token_values,
    check_template,
    leftover_tokens,
    render_index_html,
    replace_tokens,
    update_capacitor_config_json,
    update_capacitor_config_ts,
    validate_snapshot,
)


@pytest.fixture
def workspace(tmp_path: Path, template_dir: Path) -> Path:
    """A fresh copy of the template."""
    path = tmp_path / "ws"
    shutil.copytree(template_dir, path)
    return path


@pytest.fixture
def config(sample_snapshot: dict) -> AppConfigSnapshot:
    """Validated sample snapshot."""
    return AppConfigSnapshot.model_validate(sample_snapshot)


class TestValidateSnapshot:
    """Tests for validate_snapshot."""

    def test_lists_every_problem(self) -> None:
        """All missing fields are named in one error."""
        with pytest.raises(CustomizationError) as exc_info:
            validate_snapshot({"name": "App"})
        message = str(exc_info.value)
        assert exc_info.value.code == "precondition_failed"
        assert "website_url" in message or "websiteUrl" in message
        assert "android_package_id" in message or "androidPackageId" in message


class TestTokenValues:
    """Tests for build_token_values."""

    def test_app_values(self, config: AppConfigSnapshot) -> None:
        """App fields map to their placeholders."""
        values = build_token_values(config)
        assert values["APP_NAME"] == "My Shop"
        assert values["PACKAGE_ID"] == "com.example.shop"
        assert values["IOS_BUNDLE_ID"] == "com.example.shop"
        assert values["WEBSITE_URL"] == "https://shop.example.com"
        assert values["APP_VERSION"] == "1.2.0"

    def test_firebase_enabled(self, config: AppConfigSnapshot) -> None:
        """Firebase keys are filled when Firebase is enabled."""
        values = build_token_values(config)
        assert values["FIREBASE_ENABLED"] == "true"
        assert values["FIREBASE_API_KEY"] == "AIza-test"
        assert values["FIREBASE_ANALYTICS_ENABLED"] == "true"
        assert values["FIREBASE_CRASHLYTICS_ENABLED"] == "false"
        assert values["FIREBASE_AUTH_DOMAIN"] == ""

    def test_firebase_disabled_blanks_keys(self, sample_snapshot: dict) -> None:
        """Disabled Firebase yields empty keys even if a config is present."""
        sample_snapshot["firebaseEnabled"] = False
        values = build_token_values(AppConfigSnapshot.model_validate(sample_snapshot))
        assert values["FIREBASE_ENABLED"] == "false"
        assert values["FIREBASE_API_KEY"] == ""
        assert values["FIREBASE_ANALYTICS_ENABLED"] == "false"

    def test_styling_defaults(self, config: AppConfigSnapshot) -> None:
        """Secondary and accent colours fall back to the primary colour."""
        values = build_token_values(config)
        assert values["PRIMARY_COLOR"] == "#ff0000"
        assert values["SECONDARY_COLOR"] == "#ff0000"
        assert values["ACCENT_COLOR"] == "#ff0000"
        assert values["LOGO_URL"] == ""

    def test_feature_flags(self, config: AppConfigSnapshot) -> None:
        """Feature flags render as true/false."""
        values = build_token_values(config)
        assert values["FEATURE_PUSH_NOTIFICATIONS"] == "true"
        assert values["FEATURE_OFFLINE_MODE"] == "false"


class TestReplaceTokens:
    """Tests for replace_tokens."""

    def test_known_and_unknown(self) -> None:
        """Known tokens are substituted and unknown ones blanked."""
        content, unknown = replace_tokens(
            "a={{APP_NAME}} b={{ NOT_A_TOKEN }}", {"APP_NAME": "X"}
        )
        assert content == "a=X b="
        assert unknown == {"NOT_A_TOKEN"}

    def test_lowercase_braces_untouched(self) -> None:
        """Lowercase template syntax is not a placeholder."""
        content, unknown = replace_tokens("{{ item.name }}", {})
        assert content == "{{ item.name }}"
        assert unknown == set()


class TestCapacitorConfigTs:
    """Tests for update_capacitor_config_ts."""

    def test_rewrites_identity(self, workspace: Path, config: AppConfigSnapshot) -> None:
        """appId, appName, webDir and server.url are set."""
        path = workspace / "capacitor.config.ts"
        update_capacitor_config_ts(path, config, "www")
        content = path.read_text()

        assert "appId: 'com.example.shop'" in content
        assert "appName: 'My Shop'" in content
        assert "webDir: 'www'" in content
        assert "url: 'https://shop.example.com'" in content
        assert "androidScheme: 'https'" in content
        assert "com.template.app" not in content

    def test_inserts_ios_block(self, workspace: Path, config: AppConfigSnapshot) -> None:
        """An ios block is added when the template has none."""
        path = workspace / "capacitor.config.ts"
        update_capacitor_config_ts(path, config, "www")
        content = path.read_text()

        assert "ios: {" in content
        assert "scheme: 'MyShop'" in content
        assert "bundleId: 'com.example.shop'" in content

    def test_idempotent(self, workspace: Path, config: AppConfigSnapshot) -> None:
        """Applying the same edit twice gives identical bytes."""
        path = workspace / "capacitor.config.ts"
        update_capacitor_config_ts(path, config, "www")
        first = path.read_bytes()
        update_capacitor_config_ts(path, config, "www")
        assert path.read_bytes() == first

    def test_escapes_quotes(self, workspace: Path, sample_snapshot: dict) -> None:
        """Quotes in the app name are escaped and stay idempotent."""
        sample_snapshot["name"] = "Bob's Shop"
        config = AppConfigSnapshot.model_validate(sample_snapshot)
        path = workspace / "capacitor.config.ts"

        update_capacitor_config_ts(path, config, "www")
        first = path.read_text()
        update_capacitor_config_ts(path, config, "www")

        assert "appName: 'Bob\\'s Shop'" in first
        assert path.read_text() == first


class TestCapacitorConfigJson:
    """Tests for update_capacitor_config_json."""

    def test_rewrites_fields(self, tmp_path: Path, config: AppConfigSnapshot) -> None:
        """The JSON config gets identity, server and ios settings."""
        path = tmp_path / "capacitor.config.json"
        path.write_text(json.dumps({"appId": "x", "plugins": {"SplashScreen": {}}}))

        update_capacitor_config_json(path, config, "www")
        data = json.loads(path.read_text())

        assert data["appId"] == "com.example.shop"
        assert data["appName"] == "My Shop"
        assert data["webDir"] == "www"
        assert data["server"]["url"] == "https://shop.example.com"
        assert data["ios"] == {"scheme": "MyShop", "bundleId": "com.example.shop"}
        assert data["plugins"] == {"SplashScreen": {}}

    def test_invalid_json(self, tmp_path: Path, config: AppConfigSnapshot) -> None:
        """Broken JSON is a customization error."""
        path = tmp_path / "capacitor.config.json"
        path.write_text("{not json")
        with pytest.raises(CustomizationError, match="Invalid JSON"):
            update_capacitor_config_json(path, config, "www")


class TestRenderIndexHtml:
    """Tests for render_index_html."""

    def test_escapes_values(self, sample_snapshot: dict) -> None:
        """Name and URL are HTML-escaped."""
        sample_snapshot["name"] = "<Shop & Co>"
        sample_snapshot["websiteUrl"] = "https://shop.example.com/?a=1&b=2"
        page = render_index_html(AppConfigSnapshot.model_validate(sample_snapshot))

        assert "<title>&lt;Shop &amp; Co&gt;</title>" in page
        assert "url=https://shop.example.com/?a=1&amp;b=2" in page


class TestCheckTemplate:
    """Tests for check_template."""

    def test_ts_config_accepted(self, workspace: Path) -> None:
        """A capacitor.config.ts satisfies the check."""
        check_template(workspace)

    def test_json_config_accepted(self, workspace: Path) -> None:
        """A capacitor.config.json alone satisfies the check."""
        (workspace / "capacitor.config.ts").unlink()
        (workspace / "capacitor.config.json").write_text("{}", encoding="utf-8")
        check_template(workspace)

    def test_missing_config(self, workspace: Path) -> None:
        """Without either file the check is a precondition failure."""
        (workspace / "capacitor.config.ts").unlink()
        with pytest.raises(CustomizationError) as exc_info:
            check_template(workspace)
        assert exc_info.value.code == "precondition_failed"


class TestTemplateCustomizer:
    """Tests for TemplateCustomizer.customize."""

    def test_customizes_workspace(
        self, workspace: Path, sample_snapshot: dict
    ) -> None:
        """All known files are rewritten and no placeholder remains."""
        changed = TemplateCustomizer().customize(workspace, sample_snapshot)

        assert "capacitor.config.ts" in changed
        assert "package.json" in changed
        assert "src/index.html" in changed
        assert "src/js/config.js" in changed
        assert "android/app/src/main/res/values/strings.xml" in changed
        assert leftover_tokens(workspace) == []

        strings = (
            workspace / "android/app/src/main/res/values/strings.xml"
        ).read_text()
        assert '<string name="app_name">My Shop</string>' in strings

        config_js = (workspace / "src/js/config.js").read_text()
        assert "enabled: true, apiKey: 'AIza-test'" in config_js

        package = json.loads((workspace / "package.json").read_text())
        assert package["capacitor"]["appId"] == "com.example.shop"

    def test_idempotent(self, workspace: Path, sample_snapshot: dict) -> None:
        """Customizing twice leaves the workspace byte-identical."""
        customizer = TemplateCustomizer()
        customizer.customize(workspace, sample_snapshot)
        files = {
            p: p.read_bytes() for p in workspace.rglob("*") if p.is_file()
        }
        customizer.customize(workspace, sample_snapshot)
        assert {p: p.read_bytes() for p in workspace.rglob("*") if p.is_file()} == files

    def test_unknown_token_is_blanked(
        self, workspace: Path, sample_snapshot: dict
    ) -> None:
        """An unrecognised placeholder does not fail the job."""
        (workspace / "src" / "extra.json").write_text('{"x": "{{MYSTERY}}"}')
        TemplateCustomizer().customize(workspace, sample_snapshot)
        assert (workspace / "src" / "extra.json").read_text() == '{"x": ""}'

    def test_missing_capacitor_config(
        self, workspace: Path, sample_snapshot: dict
    ) -> None:
        """A template without a Capacitor config cannot be customized."""
        (workspace / "capacitor.config.ts").unlink()
        with pytest.raises(CustomizationError, match="capacitor.config"):
            TemplateCustomizer().customize(workspace, sample_snapshot)

    def test_invalid_snapshot(self, workspace: Path) -> None:
        """An invalid snapshot is rejected before any file is written."""
        before = (workspace / "capacitor.config.ts").read_text()
        with pytest.raises(CustomizationError):
            TemplateCustomizer().customize(workspace, {"name": "x"})
        assert (workspace / "capacitor.config.ts").read_text() == before
