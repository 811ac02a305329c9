"""Unit tests for the shared value types."""

import pytest

from wpms_mover.exceptions import InvalidEnvironmentError, InvalidTenantError
from wpms_mover.types import ConnectionInfo, EnvironmentRef, normalize_tenant_id


class TestEnvironmentRef:
    """Tests for EnvironmentRef.parse() and formatting."""

    def test_parse_site_and_stage(self):
        env = EnvironmentRef.parse("mysite.live")
        assert env.site == "mysite"
        assert env.stage == "live"

    def test_str_round_trips(self):
        assert str(EnvironmentRef.parse("a-site.dev")) == "a-site.dev"

    def test_strips_whitespace(self):
        assert EnvironmentRef.parse("  mysite.test ") == EnvironmentRef("mysite", "test")

    @pytest.mark.parametrize("value", ["mysite", "mysite.", ".live", "a.b.c", ""])
    def test_rejects_malformed(self, value):
        with pytest.raises(InvalidEnvironmentError, match="site-name.env"):
            EnvironmentRef.parse(value)

    def test_is_hashable_and_comparable(self):
        assert {EnvironmentRef("a", "dev"), EnvironmentRef("a", "dev")} == {
            EnvironmentRef("a", "dev")
        }
        assert EnvironmentRef("a", "dev") != EnvironmentRef("a", "live")


class TestNormalizeTenantId:
    """Tests for normalize_tenant_id()."""

    def test_int_becomes_string(self):
        assert normalize_tenant_id(5) == "5"

    def test_alphanumeric_string_is_kept(self):
        assert normalize_tenant_id("12ab") == "12ab"

    @pytest.mark.parametrize("value", ["", "5_", "5%", "../5", "5 6", "5;DROP"])
    def test_rejects_unsafe_ids(self, value):
        with pytest.raises(InvalidTenantError):
            normalize_tenant_id(value)


class TestConnectionInfo:
    """Tests for ConnectionInfo.from_terminus()."""

    def test_maps_terminus_fields(self):
        info = ConnectionInfo.from_terminus(
            {
                "mysql_host": "dbserver.live.abc.drush.in",
                "mysql_port": "12345",
                "mysql_database": "pantheon",
                "mysql_username": "pantheon",
                "mysql_password": "pw",
                "sftp_command": "sftp -o Port=2222 live.abc@appserver.live.abc.drush.in",
            },
            site_uuid="abc",
        )
        assert info.mysql_host == "dbserver.live.abc.drush.in"
        assert info.mysql_port == 12345
        assert info.site_uuid == "abc"
        assert info.sftp_command.startswith("sftp")

    def test_password_is_not_in_repr(self):
        info = ConnectionInfo("h", 3306, "pantheon", "pantheon", "hunter2", "uuid")
        assert "hunter2" not in repr(info)
