"""Unit tests for the table transfer engine."""

import signal

import pytest

from wpms_mover.exceptions import PreconditionError, QueryError, TransportError
from wpms_mover.services.tables import (
    TableTransferEngine,
    belongs_to_tenant,
    escape_like,
    quote_identifier,
    table_pattern,
)
from wpms_mover.types import EnvironmentRef

SOURCE = EnvironmentRef("a", "live")
DEST = EnvironmentRef("b", "live")


@pytest.fixture()
def engine(make_context):
    context = make_context()
    return TableTransferEngine(context.config, context.connections, context.lookup.connection_info)


@pytest.fixture()
def source_db(server_for, sample_tenant_tables, sample_blog_row):
    server = server_for("a.live")
    server.tables.update(sample_tenant_tables)
    server.tables["wp_55_posts"] = [{"ID": 1}]
    server.tables["wp_options"] = [{"option_name": "network"}]
    server.tables["wp_blogs"] = [
        {"blog_id": 1, "site_id": 1, "domain": "network.example", "path": "/"},
        sample_blog_row,
    ]
    return server


@pytest.fixture()
def dest_db(server_for):
    server = server_for("b.live")
    server.tables["wp_blogs"] = [{"blog_id": 1, "site_id": 1, "domain": "b.example", "path": "/"}]
    return server


class TestPatterns:
    """Tests for the tenant table name helpers."""

    def test_escape_like(self):
        assert escape_like("wp_") == "wp\\_"
        assert escape_like("50%") == "50\\%"
        assert escape_like("a\\b") == "a\\\\b"

    def test_table_pattern(self):
        assert table_pattern("wp_", "5") == "wp\\_5\\_%"

    @pytest.mark.parametrize(
        "table, expected",
        [
            ("wp_12_posts", True),
            ("wp_12_", False),
            ("wp_123_posts", False),
            ("wp_1_posts", False),
            ("wp_posts", False),
            ("wpx12_posts", False),
        ],
    )
    def test_belongs_to_tenant(self, table, expected):
        assert belongs_to_tenant(table, "wp_", "12") is expected

    def test_quote_identifier(self):
        assert quote_identifier("wp_blogs") == "`wp_blogs`"
        assert quote_identifier("we`ird") == "`we``ird`"


class TestDiscoverTables:
    """Tests for TableTransferEngine.discover_tables()."""

    def test_finds_only_the_tenants_tables(self, engine, source_db):
        assert engine.discover_tables(SOURCE, 5) == ["wp_5_options", "wp_5_posts"]

    def test_tenant_12_does_not_match_123(self, engine, server_for):
        server_for("a.live").tables.update(
            {"wp_12_posts": [], "wp_123_posts": [], "wp_12_options": []}
        )
        assert engine.discover_tables(SOURCE, "12") == ["wp_12_options", "wp_12_posts"]

    def test_no_tables_returns_empty(self, engine, source_db, caplog):
        assert engine.discover_tables(SOURCE, 9) == []
        assert "No tables matching" in caplog.text

    def test_query_failure_is_query_error(self, engine, source_db):
        source_db.fail_on = "SHOW TABLES"
        with pytest.raises(QueryError):
            engine.discover_tables(SOURCE, 5)


class TestCommands:
    """Tests for the mysqldump and mysql argv builders."""

    def test_dump_is_scoped_to_tables(self, engine, fake_lookup):
        info = fake_lookup.connection_info(SOURCE)
        argv = engine.build_dump_command(info, ["wp_5_options", "wp_5_posts"])
        assert argv[0] == "mysqldump"
        assert "--column-statistics=0" in argv
        assert "--host=db.a.live" in argv
        assert argv[-3:] == ["pantheon", "wp_5_options", "wp_5_posts"]
        assert not any("secret" in arg for arg in argv)

    def test_empty_table_set_never_dumps_whole_database(self, engine, fake_lookup):
        with pytest.raises(PreconditionError):
            engine.build_dump_command(fake_lookup.connection_info(SOURCE), [])

    def test_import_targets_destination_database(self, engine, fake_lookup):
        argv = engine.build_import_command(fake_lookup.connection_info(DEST))
        assert argv[0] == "mysql"
        assert "--host=db.b.live" in argv
        assert argv[-1] == "pantheon"


class TestTransferTables:
    """Tests for TableTransferEngine.transfer_tables()."""

    def test_copies_tables(self, engine, source_db, dest_db, fake_pipeline, sample_tenant_tables):
        engine.transfer_tables(SOURCE, DEST, ["wp_5_options", "wp_5_posts"])

        assert dest_db.tables["wp_5_options"] == sample_tenant_tables["wp_5_options"]
        assert len(dest_db.tables["wp_5_posts"]) == 3
        assert "wp_55_posts" not in dest_db.tables
        assert "wp_options" not in dest_db.tables

    def test_password_goes_through_environment(self, engine, source_db, dest_db, fake_pipeline, monkeypatch):
        captured = {}

        def capture(producer_argv, consumer_argv, token=None, producer_env=None, consumer_env=None):
            captured["producer_env"] = producer_env
            captured["consumer_env"] = consumer_env
            return fake_pipeline(producer_argv, consumer_argv)

        monkeypatch.setattr("wpms_mover.services.tables.run_pipeline", capture)
        engine.transfer_tables(SOURCE, DEST, ["wp_5_posts"])
        assert captured["producer_env"]["MYSQL_PWD"] == "secret"
        assert captured["consumer_env"]["MYSQL_PWD"] == "secret"

    def test_import_failure_behind_broken_pipe(self, engine, source_db, dest_db, fake_pipeline):
        """mysql refusing the login closes the pipe and mysqldump dies of SIGPIPE."""
        fake_pipeline.producer_returncode = -signal.SIGPIPE
        fake_pipeline.consumer_returncode = 1
        with pytest.raises(TransportError) as exc_info:
            engine.transfer_tables(SOURCE, DEST, ["wp_5_posts"])
        assert exc_info.value.tool == "mysql"
        assert exc_info.value.returncode == 1
        assert "Access denied" in exc_info.value.stderr
        assert "wp_5_posts" not in dest_db.tables

    def test_dump_error_wins_over_import_error(self, engine, source_db, dest_db, fake_pipeline):
        fake_pipeline.producer_returncode = 2
        fake_pipeline.consumer_returncode = 1
        with pytest.raises(TransportError) as exc_info:
            engine.transfer_tables(SOURCE, DEST, ["wp_5_posts"])
        assert exc_info.value.tool == "mysqldump"
        assert exc_info.value.returncode == 2
        assert "wp_5_posts" not in dest_db.tables

    def test_import_failure(self, engine, source_db, dest_db, fake_pipeline):
        fake_pipeline.consumer_returncode = 1
        with pytest.raises(TransportError) as exc_info:
            engine.transfer_tables(SOURCE, DEST, ["wp_5_posts"])
        assert exc_info.value.tool == "mysql"
        assert "Access denied" in exc_info.value.stderr


class TestRoutingRow:
    """Tests for the wp_blogs row copy."""

    def test_fetch_routing_row(self, engine, source_db, sample_blog_row):
        assert engine.fetch_routing_row(SOURCE, 5) == sample_blog_row
        assert engine.fetch_routing_row(SOURCE, 9) is None

    def test_replace_twice_leaves_one_row(self, engine, source_db, dest_db, sample_blog_row):
        engine.transfer_routing_row(SOURCE, DEST, 5)
        engine.transfer_routing_row(SOURCE, DEST, "5")

        rows = [r for r in dest_db.tables["wp_blogs"] if r["blog_id"] == 5]
        assert rows == [sample_blog_row]
        assert len(dest_db.tables["wp_blogs"]) == 2

    def test_overwrites_existing_row(self, engine, source_db, dest_db, sample_blog_row):
        dest_db.tables["wp_blogs"].append({**sample_blog_row, "domain": "stale.example"})
        engine.transfer_routing_row(SOURCE, DEST, 5)
        row = next(r for r in dest_db.tables["wp_blogs"] if r["blog_id"] == 5)
        assert row["domain"] == "a.example"

    def test_missing_row_writes_nothing(self, engine, source_db, dest_db):
        before = list(dest_db.tables["wp_blogs"])
        with pytest.raises(PreconditionError, match="no row in wp_blogs"):
            engine.transfer_routing_row(SOURCE, DEST, 9)
        assert dest_db.tables["wp_blogs"] == before
        assert not any(sql.startswith("REPLACE") for sql, _ in dest_db.statements)
