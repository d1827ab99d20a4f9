#!/usr/bin/env python3
"""
PostgreSQL provisioning for services that declare a database requirement.

A template opts in with a comment line:

    # RequiresPostgres: db=pwpush_db user=pwpush_user

Provisioning runs `psql` inside the shared PostgreSQL container. Every
statement is safe to re-run:
- an existing role is left untouched (its password is never rotated)
- an existing database only gets its owner re-asserted
- grants and default privileges are re-applied unconditionally
Statements commit one by one, so a failure part way through is repaired by
running the same request again.
"""

from __future__ import annotations

import getpass
import logging
import re
import secrets
import string
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .console import info, success
from .errors import ProvisioningError
from .runner import CommandRunner

logger = logging.getLogger(__name__)

REQUIREMENT_PATTERN = re.compile(r'^\s*#\s*RequiresPostgres:(.*)$', re.IGNORECASE | re.MULTILINE)
PASSWORD_ALPHABET = string.ascii_letters + string.digits
PASSWORD_LENGTH = 20


@dataclass(frozen=True)
class DatabaseRequirement:
    database: str
    username: str


@dataclass(frozen=True)
class ProvisioningRequest:
    service_label: str
    database: str
    username: str
    password: str


def quote_ident(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    return ''.join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def parse_requirement(text: str, short_name: str) -> Optional[DatabaseRequirement]:
    """
    Read the RequiresPostgres tag; db/user default to <short>_db / <short>_user.
    """
    match = REQUIREMENT_PATTERN.search(text)
    if not match:
        return None

    database = ''
    username = ''
    for pair in match.group(1).split():
        key, _, value = pair.partition('=')
        key = key.lower()
        if key == 'db':
            database = value
        elif key == 'user':
            username = value

    return DatabaseRequirement(
        database=database or f"{short_name}_db",
        username=username or f"{short_name}_user",
    )


def request_provisioning(
    short_name: str,
    requirement: DatabaseRequirement,
    interactive: bool = True,
    prompt: Callable[[str], str] = input,
    secret_prompt: Callable[[str], str] = getpass.getpass
) -> Optional[ProvisioningRequest]:
    """
    Confirm the database, user and password for one service.

    Unattended runs accept the declared defaults. A blank password is
    replaced with a generated one, shown once to the operator.
    """
    database = requirement.database
    username = requirement.username
    password = ''

    if interactive:
        answer = prompt(f"  Create DB for {short_name}? [Y/n]: ").strip().lower()
        if answer in ('n', 'no'):
            return None
        database = prompt(f"  Database name [{database}]: ").strip() or database
        username = prompt(f"  Username      [{username}]: ").strip() or username
        password = secret_prompt("  Password (leave blank to autogenerate): ")

    if not password:
        password = generate_password()
        info(f"  Generated password for {username}: {password}")

    return ProvisioningRequest(
        service_label=short_name,
        database=database,
        username=username,
        password=password,
    )


def grant_statements(database: str, username: str) -> list[tuple[str, str]]:
    """
    (target database, SQL) pairs re-asserted on every run.
    """
    db = quote_ident(database)
    user = quote_ident(username)
    return [
        ('postgres',
         f"REVOKE ALL ON DATABASE {db} FROM PUBLIC; "
         f"GRANT CONNECT, CREATE, TEMP ON DATABASE {db} TO {user}; "
         f"GRANT ALL PRIVILEGES ON DATABASE {db} TO {user};"),
        (database, f"ALTER SCHEMA public OWNER TO {user};"),
        (database, f"GRANT ALL PRIVILEGES ON SCHEMA public TO {user};"),
        (database,
         f"ALTER DEFAULT PRIVILEGES FOR ROLE {user} IN SCHEMA public GRANT ALL ON TABLES TO {user};"),
        (database,
         f"ALTER DEFAULT PRIVILEGES FOR ROLE {user} IN SCHEMA public GRANT ALL ON SEQUENCES TO {user};"),
        (database,
         f"ALTER DEFAULT PRIVILEGES FOR ROLE {user} IN SCHEMA public GRANT ALL ON FUNCTIONS TO {user};"),
    ]


class PostgresProvisioner:
    """Idempotent role/database provisioning inside a PostgreSQL container."""

    def __init__(
        self,
        runner: CommandRunner,
        container: str,
        admin_user: str = 'postgres',
        ready_attempts: int = 30,
        ready_interval: float = 2.0,
        sleep: Callable[[float], None] = time.sleep
    ) -> None:
        self.runner = runner
        self.container = container
        self.admin_user = admin_user
        self.ready_attempts = ready_attempts
        self.ready_interval = ready_interval
        self.sleep = sleep

    def _psql(self, database: str, *args: str) -> list[str]:
        return ['podman', 'exec', self.container, 'psql', '-U', self.admin_user, '-d', database, *args]

    def container_running(self) -> bool:
        result = self.runner.run(['podman', 'inspect', '-f', '{{.State.Running}}', self.container])
        return result.ok and 'true' in result.output.lower()

    def is_ready(self) -> bool:
        if not self.container_running():
            return False
        result = self.runner.run([
            'podman', 'exec', self.container,
            'pg_isready', '-h', '127.0.0.1', '-U', self.admin_user,
        ])
        return result.ok

    def wait_ready(self) -> bool:
        """Poll readiness a fixed number of times, fixed interval, no backoff."""
        for attempt in range(1, self.ready_attempts + 1):
            if self.is_ready():
                logger.debug(f"PostgreSQL ready after {attempt} attempt(s)")
                return True
            if attempt < self.ready_attempts:
                self.sleep(self.ready_interval)
        return False

    def _exists(self, sql: str) -> bool:
        result = self.runner.run(self._psql('postgres', '-Atqc', sql))
        if not result.ok:
            raise ProvisioningError(f"Catalog query failed: {sql}", result.output)
        return any(line.strip() == '1' for line in result.output.splitlines())

    def role_exists(self, username: str) -> bool:
        return self._exists(f"SELECT 1 FROM pg_roles WHERE rolname = {quote_literal(username)}")

    def database_exists(self, database: str) -> bool:
        return self._exists(f"SELECT 1 FROM pg_database WHERE datname = {quote_literal(database)}")

    def execute(self, database: str, sql: str) -> None:
        result = self.runner.run(self._psql(database, '-v', 'ON_ERROR_STOP=1', '-c', sql))
        if not result.ok:
            raise ProvisioningError(
                f"Statement failed on {database}: {result.output.strip() or sql}",
                result.output
            )

    def provision(self, request: ProvisioningRequest) -> None:
        """Create or re-assert role, database, ownership and grants."""
        user = quote_ident(request.username)
        db = quote_ident(request.database)

        if not self.role_exists(request.username):
            self.execute('postgres', f"CREATE ROLE {user} WITH LOGIN PASSWORD {quote_literal(request.password)};")
            info(f"  created role {request.username}")
        else:
            info(f"  role {request.username} already exists; skipping create")

        if not self.database_exists(request.database):
            self.execute('postgres', f"CREATE DATABASE {db} OWNER {user};")
            info(f"  created database {request.database} owned by {request.username}")
        else:
            info(f"  database {request.database} already exists; ensuring owner={request.username}")
            self.execute('postgres', f"ALTER DATABASE {db} OWNER TO {user};")

        for target, sql in grant_statements(request.database, request.username):
            self.execute(target, sql)

        success(f"  {request.service_label}: {request.database} / {request.username} provisioned")
