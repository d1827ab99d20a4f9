"""
Schema hook injection tests.
"""

import stat
from pathlib import Path

import pytest
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from quadstack.config import SchemaHook  # noqa: E402
from quadstack.errors import DeploymentError  # noqa: E402
from quadstack.hooks import HookInjector, match_schema_hook, render_template  # noqa: E402
from quadstack.postgres import ProvisioningRequest  # noqa: E402
from quadstack.tokens import TokenTable  # noqa: E402

SCHEMA_SQL = "CREATE TABLE guacamole_user (user_id serial);\n"


def _guac_request() -> ProvisioningRequest:
    return ProvisioningRequest("guacamole", "guacamole_db", "guacamole_user", "pa55word")


class TestMatchSchemaHook:
    def test_glob_is_case_insensitive(self):
        hooks = [SchemaHook("guacamole", "guacamole*", "https://example.com/init.sql")]

        assert match_schema_hook("Guacamole-web", hooks) is hooks[0]
        assert match_schema_hook("pwpush", hooks) is None


class TestRenderTemplate:
    def test_dropin(self):
        text = render_template("dbinit-dropin.conf.j2", {"init_unit": "x-db-init.service"})

        assert "Wants=x-db-init.service" in text
        assert "After=x-db-init.service" in text

    def test_missing_template(self):
        with pytest.raises(FileNotFoundError):
            render_template("nope.j2", {})


class TestHookInjector:
    def test_writes_all_artifacts(self, settings):
        table = TokenTable(settings.install_dir)
        injector = HookInjector(settings, fetch=lambda url: SCHEMA_SQL)

        hook = injector.inject(_guac_request(), "guacamole.service", table)

        assert hook is not None
        assert hook.init_unit == "guacamole-db-init.service"
        assert hook.sql_path == settings.init_sql_dir / "guacamole-init.sql"
        assert hook.sql_path.read_text() == SCHEMA_SQL
        assert hook.dropin_path == settings.systemd_dir / "guacamole.service.d" / "10-dbinit.conf"
        assert (settings.install_dir / "guacamole").is_dir()

        env_text = hook.env_path.read_text()
        assert "DB_NAME=guacamole_db" in env_text
        assert "DB_PASSWORD=pa55word" in env_text
        assert stat.S_IMODE(hook.env_path.stat().st_mode) == 0o600

    def test_unit_is_guarded_and_fully_rendered(self, settings):
        table = TokenTable(settings.install_dir)
        hook = HookInjector(settings, fetch=lambda url: SCHEMA_SQL).inject(
            _guac_request(), "guacamole.service", table
        )

        unit = hook.unit_path.read_text()
        sentinel = settings.install_dir / "guacamole" / ".schema_loaded"
        assert "Type=oneshot" in unit
        assert "Requires=postgresql.service" in unit
        assert f"ConditionPathExists={hook.sql_path}" in unit
        assert f"ConditionPathExists=!{sentinel}" in unit
        assert f"ExecStart=/usr/bin/touch {sentinel}" in unit
        assert f"EnvironmentFile={hook.env_path}" in unit
        assert "%%" not in unit
        assert "{{" not in unit

    def test_non_matching_service_is_skipped(self, settings):
        request = ProvisioningRequest("pwpush", "pwpush_db", "pwpush_user", "x")
        injector = HookInjector(settings, fetch=lambda url: pytest.fail("should not fetch"))

        assert injector.inject(request, "pwpush.service", TokenTable(settings.install_dir)) is None
        assert not settings.systemd_dir.exists()

    def test_fetch_failure_raises_and_writes_no_unit(self, settings):
        def failing_fetch(url):
            raise DeploymentError(f"Failed to download {url}: 404")

        injector = HookInjector(settings, fetch=failing_fetch)

        with pytest.raises(DeploymentError, match="skipping guacamole schema load hook"):
            injector.inject(_guac_request(), "guacamole.service", TokenTable(settings.install_dir))

        assert not (settings.systemd_dir / "guacamole-db-init.service").exists()
        assert not (settings.unit_dir / "guacamole-db.env").exists()
