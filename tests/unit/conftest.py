"""Unit test configuration and shared fixtures.

The fakes here stand in for the external collaborators: a MySQL server that
understands the handful of statements the mover issues, a Terminus lookup,
and an rsync that copies between local directories standing in for the
appservers.
"""

from __future__ import annotations

import copy
import re
import shutil
from pathlib import Path
from typing import Any

import pymysql
import pytest

from wpms_mover.core.config import CoordinationConfig, MoverConfig
from wpms_mover.core.context import MoveContext
from wpms_mover.types import ConnectionInfo, EnvironmentRef
from wpms_mover.utils.process import PipelineResult, ProcessResult

# ---------------------------------------------------------------------------
# Fake MySQL
# ---------------------------------------------------------------------------


def like_to_regex(pattern: str) -> re.Pattern:
    """Translate a MySQL LIKE pattern (backslash escapes) to a regex."""
    out = []
    chars = iter(pattern)
    for c in chars:
        if c == "\\":
            out.append(re.escape(next(chars, "\\")))
        elif c == "%":
            out.append(".*")
        elif c == "_":
            out.append(".")
        else:
            out.append(re.escape(c))
    return re.compile("".join(out), re.DOTALL)


class FakeMySQLServer:
    """In-memory database: table name -> list of row dicts."""

    def __init__(self, name: str = "pantheon") -> None:
        self.name = name
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.primary_keys: dict[str, str] = {"wp_blogs": "blog_id"}
        self.auto_increment: dict[str, int] = {}
        self.statements: list[tuple[str, Any]] = []
        self.fail_on: str | None = None
        self.closed = False

    def connect(self) -> FakeConnection:
        return FakeConnection(self)

    def _table(self, name: str) -> list[dict[str, Any]]:
        if name not in self.tables:
            raise pymysql.err.ProgrammingError(1146, f"Table '{self.name}.{name}' doesn't exist")
        return self.tables[name]

    def execute(self, sql: str, params: Any) -> tuple[list[dict[str, Any]], int]:
        self.statements.append((sql, params))
        if self.fail_on and self.fail_on in sql:
            raise pymysql.err.OperationalError(2013, "Lost connection to MySQL server")

        m = re.fullmatch(r"SHOW TABLES LIKE %s", sql)
        if m:
            regex = like_to_regex(params[0])
            key = f"Tables_in_{self.name} ({params[0]})"
            rows = [{key: t} for t in sorted(self.tables) if regex.fullmatch(t)]
            return rows, len(rows)

        m = re.fullmatch(r"SELECT \* FROM `(\w+)` WHERE `(\w+)` = %s", sql)
        if m:
            table, column = m.groups()
            rows = [
                dict(r) for r in self._table(table) if str(r.get(column)) == str(params[0])
            ]
            return rows, len(rows)

        m = re.fullmatch(r"REPLACE INTO `(\w+)` \((.+)\) VALUES \((.+)\)", sql)
        if m:
            table, columns = m.group(1), re.findall(r"`(\w+)`", m.group(2))
            row = dict(zip(columns, params))
            key = self.primary_keys.get(table, columns[0])
            rows = self.tables.setdefault(table, [])
            rows[:] = [r for r in rows if r.get(key) != row[key]]
            rows.append(row)
            return [], 1

        m = re.fullmatch(r"SELECT MAX\(`(\w+)`\) AS max_id FROM `(\w+)`", sql)
        if m:
            column, table = m.groups()
            values = [r[column] for r in self._table(table) if r.get(column) is not None]
            return [{"max_id": max(values) if values else None}], 1

        m = re.fullmatch(r"ALTER TABLE `(\w+)` AUTO_INCREMENT = (\d+)", sql)
        if m:
            self._table(m.group(1))
            self.auto_increment[m.group(1)] = int(m.group(2))
            return [], 0

        raise pymysql.err.ProgrammingError(1064, f"You have an error in your SQL syntax: {sql}")


class FakeCursor:
    def __init__(self, server: FakeMySQLServer) -> None:
        self._server = server
        self._rows: list[dict[str, Any]] = []
        self.rowcount = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self._rows, self.rowcount = self._server.execute(sql, params)
        return self.rowcount

    def fetchall(self):
        return list(self._rows)

    def fetchone(self):
        return self._rows[0] if self._rows else None


class FakeConnection:
    def __init__(self, server: FakeMySQLServer) -> None:
        self.server = server

    def cursor(self):
        return FakeCursor(self.server)

    def close(self):
        self.server.closed = True


# ---------------------------------------------------------------------------
# Fake Terminus
# ---------------------------------------------------------------------------


class FakeLookup:
    """Environment lookup + inventory; every env gets its own database host."""

    def __init__(self) -> None:
        self.wake_calls: list[str] = []
        self.lookup_calls: list[str] = []
        self.wake_error: Exception | None = None
        self.sites: dict[str, list[str]] = {}

    def wake(self, env: EnvironmentRef) -> None:
        self.wake_calls.append(str(env))
        if self.wake_error is not None:
            raise self.wake_error

    def connection_info(self, env: EnvironmentRef) -> ConnectionInfo:
        self.lookup_calls.append(str(env))
        return ConnectionInfo(
            mysql_host=f"db.{env}",
            mysql_port=3306,
            mysql_database="pantheon",
            mysql_username="pantheon",
            mysql_password="secret",
            site_uuid=f"uuid-{env.site}",
        )

    def list_sites(self, upstream: str) -> list[str]:
        return list(self.sites.get(upstream, []))


# ---------------------------------------------------------------------------
# Fake transport tools
# ---------------------------------------------------------------------------


def _arg_value(argv: list[str], prefix: str) -> str | None:
    for arg in argv:
        if arg.startswith(prefix):
            return arg[len(prefix):]
    return None


class FakeDumpPipeline:
    """Stands in for ``run_pipeline``: copies the dumped tables between fake servers."""

    def __init__(self, servers: dict[str, FakeMySQLServer]) -> None:
        self.servers = servers
        self.calls: list[tuple[list[str], list[str]]] = []
        self.producer_returncode = 0
        self.consumer_returncode = 0

    def __call__(self, producer_argv, consumer_argv, token=None, producer_env=None, consumer_env=None):
        self.calls.append((producer_argv, consumer_argv))
        source = self.servers[_arg_value(producer_argv, "--host=")]
        dest = self.servers[_arg_value(consumer_argv, "--host=")]
        database_index = producer_argv.index(source.name)
        tables = producer_argv[database_index + 1:]
        if self.producer_returncode == 0 and self.consumer_returncode == 0:
            for table in tables:
                dest.tables[table] = copy.deepcopy(source.tables[table])
        return PipelineResult(
            producer=ProcessResult(
                "mysqldump",
                self.producer_returncode,
                "",
                "mysqldump: Got error: 2013" if self.producer_returncode > 0 else "",
            ),
            consumer=ProcessResult(
                "mysql",
                self.consumer_returncode,
                "",
                "ERROR 1045 (28000): Access denied" if self.consumer_returncode else "",
            ),
        )


class FakeRemoteFiles:
    """rsync/sftp stand-in; ``user@host:path`` maps to ``<root>/<host>/<path>``."""

    def __init__(self, root: Path, chunk_size: int = 7) -> None:
        self.root = root
        self.chunk_size = chunk_size
        self.rsync_calls: list[list[str]] = []
        self.sftp_calls: list[tuple[list[str], str | None]] = []
        self.fail_dry_run: int = 0
        self.fail_transfer: int = 0

    def resolve(self, target: str) -> Path:
        if "@" in target and ":" in target:
            address, path = target.split(":", 1)
            host = address.split("@", 1)[1]
            return self.root / host / path
        return Path(target)

    def tree(self, host: str, path: str) -> Path:
        return self.root / host / path

    def _emit(self, lines: list[str], on_stdout) -> None:
        text = "".join(f"{line}\n" for line in lines)
        for i in range(0, len(text), self.chunk_size):
            on_stdout(text[i:i + self.chunk_size])

    def rsync(self, argv, on_stdout, on_stderr, token=None, env=None, stdin_data=None, stdout_errors=None):
        self.rsync_calls.append(list(argv))
        src, dst = self.resolve(argv[-2]), self.resolve(argv[-1])

        if "--delete" in argv:
            if dst.exists():
                shutil.rmtree(dst)
            dst.mkdir(parents=True)
            return 0

        if "--dry-run" in argv:
            if self.fail_dry_run:
                on_stderr("rsync: change_dir failed: No such file or directory (2)\n")
                return self.fail_dry_run
            if not src.exists():
                on_stderr(f'rsync: link_stat "{src}" failed: No such file or directory (2)\n')
                return 23
            lines = ["./"]
            for path in sorted(src.rglob("*")):
                rel = path.relative_to(src).as_posix()
                lines.append(f"{rel}/" if path.is_dir() else rel)
            self._emit(lines, on_stdout)
            return 0

        if self.fail_transfer:
            on_stderr("rsync error: some files could not be transferred (code 23)\n")
            return self.fail_transfer
        manifest = Path(_arg_value(argv, "--files-from="))
        # Like rsync, name each directory it has to create before the files in it
        lines = []
        for rel in manifest.read_text().splitlines():
            target = dst / rel
            for parent in reversed(list(Path(rel).parents)[:-1]):
                if not (dst / parent).exists():
                    lines.append(f"{parent.as_posix()}/")
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src / rel, target)
            lines.append(rel)
        self._emit(lines, on_stdout)
        return 0

    def run_command(self, argv, token=None, env=None, stdin_data=None):
        self.sftp_calls.append((list(argv), stdin_data))
        host = argv[-1].split("@", 1)[1]
        for line in (stdin_data or "").splitlines():
            (self.root / host / line.split(" ", 1)[1]).mkdir(parents=True, exist_ok=True)
        return ProcessResult("sftp", 0, "", "")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def mover_config(tmp_path) -> MoverConfig:
    return MoverConfig(
        staging_root=str(tmp_path / "staging"),
        show_progress=False,
        wake_ttl=None,
        coordination=CoordinationConfig(ledger_dir=str(tmp_path / "ledger")),
    )


@pytest.fixture()
def fake_lookup() -> FakeLookup:
    return FakeLookup()


@pytest.fixture()
def fake_server() -> FakeMySQLServer:
    return FakeMySQLServer()


@pytest.fixture()
def mysql_servers() -> dict[str, FakeMySQLServer]:
    """Fake servers keyed by host; ``db.<site.env>`` is created on first connect."""
    return {}


@pytest.fixture()
def server_for(mysql_servers):
    def _get(env: str) -> FakeMySQLServer:
        return mysql_servers.setdefault(f"db.{env}", FakeMySQLServer())

    return _get


@pytest.fixture()
def make_context(mover_config, fake_lookup, server_for):
    """Factory fixture building a MoveContext wired to the fakes."""

    def _make(config: MoverConfig | None = None) -> MoveContext:
        return MoveContext.create(
            config or mover_config,
            lookup=fake_lookup,
            connector=lambda info: server_for(info.mysql_host[len("db."):]).connect(),
        )

    return _make


@pytest.fixture()
def fake_pipeline(mysql_servers, monkeypatch) -> FakeDumpPipeline:
    pipeline = FakeDumpPipeline(mysql_servers)
    monkeypatch.setattr("wpms_mover.services.tables.run_pipeline", pipeline)
    return pipeline


@pytest.fixture()
def fake_remote(tmp_path, monkeypatch) -> FakeRemoteFiles:
    remote = FakeRemoteFiles(tmp_path / "appservers")
    monkeypatch.setattr("wpms_mover.services.file_sync.stream_process", remote.rsync)
    monkeypatch.setattr("wpms_mover.services.file_sync.run_command", remote.run_command)
    return remote
