"""
Shared fixtures: a scripted command runner and an in-memory PostgreSQL catalog.
"""

from __future__ import annotations

import re
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from quadstack.config import DEFAULT_CONFIG, Settings, deep_merge_configs  # noqa: E402
from quadstack.runner import CommandResult  # noqa: E402

ROLE_QUERY = re.compile(r"rolname = '((?:[^']|'')*)'")
DB_QUERY = re.compile(r"datname = '((?:[^']|'')*)'")
CREATE_ROLE = re.compile(r'^CREATE ROLE "(.+?)" WITH LOGIN PASSWORD \'((?:[^\']|\'\')*)\';$')
CREATE_DB = re.compile(r'^CREATE DATABASE "(.+?)" OWNER "(.+?)";$')
ALTER_DB_OWNER = re.compile(r'^ALTER DATABASE "(.+?)" OWNER TO "(.+?)";$')


class FakePostgres:
    """Catalog state behind `podman exec <container> psql ...` commands."""

    def __init__(self, ready: bool = True) -> None:
        self.ready = ready
        self.roles: dict[str, str] = {}
        self.databases: dict[str, str] = {}
        self.grants: set[tuple[str, str]] = set()
        self.executed: list[str] = []

    def state(self) -> tuple:
        return dict(self.roles), dict(self.databases), frozenset(self.grants)

    def handle(self, cmd: list[str]):
        if cmd[:2] == ['podman', 'inspect']:
            return CommandResult(0, 'true\n' if self.ready else 'false\n')
        if 'pg_isready' in cmd:
            return CommandResult(0 if self.ready else 2, '')
        if 'psql' not in cmd:
            return None

        database = cmd[cmd.index('-d') + 1]
        sql = cmd[-1]

        if '-Atqc' in cmd:
            role = ROLE_QUERY.search(sql)
            if role:
                return CommandResult(0, '1\n' if role.group(1).replace("''", "'") in self.roles else '')
            db = DB_QUERY.search(sql)
            if db:
                return CommandResult(0, '1\n' if db.group(1) in self.databases else '')
            return CommandResult(1, 'unexpected query')

        self.executed.append(sql)
        match = CREATE_ROLE.match(sql)
        if match:
            if match.group(1) in self.roles:
                return CommandResult(1, f'ERROR:  role "{match.group(1)}" already exists')
            self.roles[match.group(1)] = match.group(2)
            return CommandResult(0, 'CREATE ROLE')
        match = CREATE_DB.match(sql)
        if match:
            if match.group(1) in self.databases:
                return CommandResult(1, f'ERROR:  database "{match.group(1)}" already exists')
            self.databases[match.group(1)] = match.group(2)
            return CommandResult(0, 'CREATE DATABASE')
        match = ALTER_DB_OWNER.match(sql)
        if match:
            self.databases[match.group(1)] = match.group(2)
            return CommandResult(0, 'ALTER DATABASE')

        self.grants.add((database, sql))
        return CommandResult(0, '')


class FakeRunner:
    """Records commands; answers from longest matching prefix, else success."""

    def __init__(self, postgres: FakePostgres | None = None, responses: dict | None = None) -> None:
        self.postgres = postgres
        self.responses: dict[tuple, CommandResult] = dict(responses or {})
        self.calls: list[list[str]] = []

    def respond(self, prefix: tuple, returncode: int = 0, output: str = '') -> None:
        self.responses[tuple(prefix)] = CommandResult(returncode, output)

    def run(self, cmd):
        cmd = [str(part) for part in cmd]
        self.calls.append(cmd)

        if self.postgres is not None and cmd[:1] == ['podman'] and cmd[1:2] != ['network']:
            result = self.postgres.handle(cmd)
            if result is not None:
                return result

        best = None
        for prefix, result in self.responses.items():
            if tuple(cmd[:len(prefix)]) == prefix and (best is None or len(prefix) > len(best[0])):
                best = (prefix, result)
        if best is not None:
            return best[1]
        return CommandResult(0, '')

    def commands_starting(self, *prefix: str) -> list[list[str]]:
        return [call for call in self.calls if call[:len(prefix)] == list(prefix)]


@pytest.fixture
def fake_postgres():
    return FakePostgres()


@pytest.fixture
def fake_runner(fake_postgres):
    runner = FakeRunner(postgres=fake_postgres)
    runner.respond(('systemctl', 'is-enabled'), 1, 'disabled\n')
    runner.respond(('systemctl', 'list-unit-files', 'postgresql.service'), 0, 'postgresql.service generated -\n')
    return runner


@pytest.fixture
def settings(tmp_path) -> Settings:
    config = deep_merge_configs(DEFAULT_CONFIG, {
        'deploy': {
            'install_dir': str(tmp_path / 'opt' / 'containers'),
            'unit_dir': str(tmp_path / 'etc' / 'containers' / 'systemd'),
            'systemd_dir': str(tmp_path / 'etc' / 'systemd' / 'system'),
        },
        'postgres': {
            'init_sql_dir': str(tmp_path / 'etc' / 'containers' / 'init-sql'),
            'ready_attempts': 3,
            'ready_interval': 0,
        },
    })
    return Settings.from_config(config)


@pytest.fixture
def no_sleep():
    calls: list[float] = []
    return calls.append, calls
