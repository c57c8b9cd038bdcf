"""Tests for database URL preparation."""

import ssl

from circadian.core.database import prepare_database_url


class TestPrepareDatabaseUrl:
    """Tests for prepare_database_url."""

    def test_sqlite_untouched(self):
        url = "sqlite+aiosqlite:///:memory:"
        assert prepare_database_url(url) == (url, {})

    def test_strips_unsupported_params_for_remote_hosts(self):
        url, connect_args = prepare_database_url(
            "postgresql+asyncpg://u:p@ep-cool-1.example.com/circadian?sslmode=require&channel_binding=require"
        )
        assert url == "postgresql+asyncpg://u:p@ep-cool-1.example.com/circadian"
        assert isinstance(connect_args["ssl"], ssl.SSLContext)

    def test_local_hosts_skip_ssl(self):
        for host in ("localhost", "127.0.0.1", "db"):
            url, connect_args = prepare_database_url(f"postgresql+asyncpg://u:p@{host}:5432/circadian?sslmode=disable")
            assert url == f"postgresql+asyncpg://u:p@{host}:5432/circadian"
            assert connect_args == {}

    def test_keeps_other_params(self):
        url, _ = prepare_database_url("postgresql+asyncpg://u:p@localhost/c?application_name=circadian&sslmode=x")
        assert url == "postgresql+asyncpg://u:p@localhost/c?application_name=circadian"
