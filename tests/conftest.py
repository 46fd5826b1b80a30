"""Shared fixtures: a miniature Capacitor template and a fake toolchain.

The fake tools are small POSIX shell scripts. Their behaviour is steered
through environment variables so that tests running builds on worker
threads can switch them without rebuilding the template:

- FAKE_INSTALL_FAIL=1: the dependency install exits 1
- FAKE_GRADLE_MODE=fail|noapk: Gradle fails, or succeeds without an APK
- FAKE_GRADLE_SLEEP=<seconds>: Gradle sleeps before producing the APK
- FAKE_XCODEBUILD_SLEEP=<seconds>: every xcodebuild call sleeps first
"""

import json
import stat
import textwrap
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import pytest

from mobile_appgen.artifacts import ArtifactManager
from mobile_appgen.db import create_all_tables, get_engine, get_session_factory
from mobile_appgen.drivers.android import AndroidDriver
from mobile_appgen.drivers.ios import IOSDriver
from mobile_appgen.drivers.process import ProcessRunner
from mobile_appgen.jobs.schema import BuildRequest
from mobile_appgen.jobs.store import SqlRecordStore
from mobile_appgen.pipeline import BuildPipeline
from mobile_appgen.template.customize import TemplateCustomizer
from mobile_appgen.types import Platform
from mobile_appgen.workspace import WorkspaceManager

CAPACITOR_CONFIG_TS = """\
import type { CapacitorConfig } from '@capacitor/cli';

const config: CapacitorConfig = {
  appId: 'com.template.app',
  appName: 'Template',
  webDir: 'dist',
  server: {
    androidScheme: 'https',
  },
};

export default config;
"""

CONFIG_JS = """\
window.APP_CONFIG = {
  name: '{{APP_NAME}}',
  url: '{{WEBSITE_URL}}',
  firebase: { enabled: {{FIREBASE_ENABLED}}, apiKey: '{{FIREBASE_API_KEY}}' },
  primaryColor: '{{PRIMARY_COLOR}}',
};
"""

STRINGS_XML = """\
<?xml version="1.0" encoding="utf-8"?>
<resources>
    <string name="app_name">{{APP_NAME}}</string>
    <string name="package_name">{{PACKAGE_ID}}</string>
</resources>
"""

FAKE_GRADLEW = """\
echo "gradle $1"
sleep "${FAKE_GRADLE_SLEEP:-0}"
case "${FAKE_GRADLE_MODE:-ok}" in
  fail)
    echo "error: Task :app:compileDebugJavaWithJavac FAILED"
    exit 1
    ;;
  noapk)
    exit 0
    ;;
esac
case "$1" in
  assembleDebug)
    mkdir -p app/build/outputs/apk/debug
    printf 'debug-apk' > app/build/outputs/apk/debug/app-debug.apk
    ;;
  assembleRelease)
    mkdir -p app/build/outputs/apk/release
    printf 'release-apk' > app/build/outputs/apk/release/app-release.apk
    ;;
esac
"""

FAKE_INSTALL = """\
echo "installing dependencies"
if [ -n "$FAKE_INSTALL_FAIL" ]; then
  echo "npm ERR! code ERESOLVE"
  exit 1
fi
mkdir -p node_modules
"""

FAKE_NPX = """\
echo "npx $*"
"""

FAKE_XCODEBUILD = """\
echo "xcodebuild $*"
sleep "${FAKE_XCODEBUILD_SLEEP:-0}"
export_path=""
while [ $# -gt 0 ]; do
  case "$1" in
    -exportPath) export_path="$2"; shift ;;
  esac
  shift
done
if [ -n "$FAKE_XCODEBUILD_FAIL" ]; then
  echo "error: No signing certificate found"
  exit 65
fi
if [ -n "$export_path" ]; then
  mkdir -p "$export_path"
  printf 'ipa' > "$export_path/App.ipa"
fi
"""


def write_script(path: Path, body: str) -> Path:
    """Write an executable /bin/sh script."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + textwrap.dedent(body), encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@dataclass
class FakeToolchain:
    """Paths of the fake external tools."""

    bin_dir: Path
    install: Path
    npx: Path
    xcodebuild: Path


@pytest.fixture
def sample_snapshot() -> dict:
    """A complete, valid app configuration snapshot."""
    return {
        "name": "My Shop",
        "description": "Mobile storefront",
        "websiteUrl": "https://shop.example.com",
        "androidPackageId": "com.example.shop",
        "version": "1.2.0",
        "firebaseEnabled": True,
        "firebaseConfig": {
            "apiKey": "AIza-test",
            "projectId": "shop-test",
            "analyticsEnabled": True,
        },
        "features": {"pushNotifications": True},
        "styling": {"primaryColor": "#ff0000"},
    }


@pytest.fixture
def template_dir(tmp_path: Path) -> Path:
    """A miniature Capacitor project template."""
    root = tmp_path / "mobile-template"
    (root / "src" / "js").mkdir(parents=True)
    (root / "capacitor.config.ts").write_text(CAPACITOR_CONFIG_TS, encoding="utf-8")
    (root / "package.json").write_text(
        json.dumps(
            {
                "name": "mobile-template",
                "scripts": {"cap": "cap"},
                "capacitor": {
                    "appId": "com.template.app",
                    "appName": "Template",
                    "webDir": "dist",
                },
            },
            indent=2,
        ),
        encoding="utf-8",
    )
    (root / "src" / "js" / "config.js").write_text(CONFIG_JS, encoding="utf-8")
    values_dir = root / "android" / "app" / "src" / "main" / "res" / "values"
    values_dir.mkdir(parents=True)
    (values_dir / "strings.xml").write_text(STRINGS_XML, encoding="utf-8")
    write_script(root / "android" / "gradlew", FAKE_GRADLEW)
    (root / "node_modules").mkdir()
    (root / "node_modules" / "stale.txt").write_text("stale", encoding="utf-8")
    return root


@pytest.fixture
def toolchain(tmp_path: Path) -> FakeToolchain:
    """Fake npm install, npx and xcodebuild scripts."""
    bin_dir = tmp_path / "bin"
    return FakeToolchain(
        bin_dir=bin_dir,
        install=write_script(bin_dir / "fake-install", FAKE_INSTALL),
        npx=write_script(bin_dir / "npx", FAKE_NPX),
        xcodebuild=write_script(bin_dir / "xcodebuild", FAKE_XCODEBUILD),
    )


@pytest.fixture
def store(tmp_path: Path) -> SqlRecordStore:
    """Record store over a fresh SQLite database."""
    engine = get_engine(f"sqlite:///{tmp_path / 'jobs.db'}")
    create_all_tables(engine)
    return SqlRecordStore(get_session_factory(engine))


@pytest.fixture
def make_pipeline(
    tmp_path: Path,
    store: SqlRecordStore,
    template_dir: Path,
    toolchain: FakeToolchain,
) -> Callable[..., BuildPipeline]:
    """Factory for pipelines wired to the fake toolchain."""

    def _make(
        template: Path | None = None,
        ios_enabled: bool = False,
        keep_workspaces: bool = False,
        base_url: str | None = "/downloads",
        record_store: SqlRecordStore | None = None,
    ) -> BuildPipeline:
        jobs = record_store or store
        runner = ProcessRunner(grace_period=1.0)
        workspaces = WorkspaceManager(
            template_dir=template or template_dir,
            workspaces_dir=tmp_path / "workspaces",
            runner=runner,
            install_command=[str(toolchain.install)],
            keep_workspaces=keep_workspaces,
        )
        artifacts = ArtifactManager(tmp_path / "artifacts", jobs, base_url=base_url)
        drivers = {
            Platform.ANDROID: AndroidDriver(runner, npx_command=str(toolchain.npx)),
            Platform.IOS: IOSDriver(
                runner, npx_command=str(toolchain.npx), enabled=ios_enabled
            ),
        }
        return BuildPipeline(
            jobs,
            workspaces,
            TemplateCustomizer(),
            artifacts,
            drivers,
            asset_base_path=tmp_path,
        )

    return _make


@pytest.fixture
def make_request(sample_snapshot: dict) -> Callable[..., BuildRequest]:
    """Factory for build requests using the sample snapshot."""

    def _make(
        platform: str = "android",
        build_type: str = "debug",
        snapshot: dict | None = None,
        app_id: str = "app-1",
        user_id: str = "user-1",
    ) -> BuildRequest:
        return BuildRequest(
            app_id=app_id,
            user_id=user_id,
            platform=platform,
            build_type=build_type,
            config_snapshot=sample_snapshot if snapshot is None else snapshot,
        )

    return _make
