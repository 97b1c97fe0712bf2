"""Tests for database layer."""

import os
from unittest.mock import MagicMock, patch

import pytest


class TestGetConnPasswordFallback:
    """Tests for DB_PASSWORD fallback in get_conn() - no real DB needed."""

    def test_db_password_fallback_dsn_without_password(self):
        from wagate.infra.db import get_conn

        env = {"DATABASE_URL": "dbname=db user=u host=h port=5432", "DB_PASSWORD": "from-env"}
        with patch.dict(os.environ, env, clear=True), \
             patch("wagate.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with(
                "dbname=db user=u host=h port=5432",
                password="from-env",
            )

    def test_db_password_not_used_when_url_has_password(self):
        from wagate.infra.db import get_conn

        env = {"DATABASE_URL": "postgres://u:p@h/db", "DB_PASSWORD": "from-env"}
        with patch.dict(os.environ, env, clear=True), \
             patch("wagate.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with("postgres://u:p@h/db")

    def test_missing_database_url(self):
        from wagate.infra.db import get_conn

        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError, match="DATABASE_URL"):
                get_conn()


class TestTxn:
    def test_commits_and_closes_owned_connection(self):
        from wagate.infra.db import txn

        conn = MagicMock()
        with patch("wagate.infra.db.get_conn", return_value=conn):
            with txn() as cur:
                cur.execute("SELECT 1")

        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        conn.close.assert_called_once()

    def test_rolls_back_on_error(self):
        from wagate.infra.db import txn

        conn = MagicMock()
        with patch("wagate.infra.db.get_conn", return_value=conn):
            with pytest.raises(ValueError):
                with txn():
                    raise ValueError("boom")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        conn.close.assert_called_once()

    def test_borrowed_connection_is_not_closed(self):
        from wagate.infra.db import txn

        conn = MagicMock()
        with txn(conn):
            pass

        conn.commit.assert_called_once()
        conn.close.assert_not_called()


class TestForUpdate:
    def test_appends_clause(self):
        from wagate.infra.db import for_update

        cur = MagicMock()
        cur.fetchone.return_value = (1,)

        assert for_update(cur, "SELECT id FROM messages WHERE id = %s;", (1,)) == (1,)
        cur.execute.assert_called_once_with("SELECT id FROM messages WHERE id = %s FOR UPDATE", (1,))


# Skip integration tests if DATABASE_URL is not set
_skip_no_db = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping DB integration tests",
)


@_skip_no_db
class TestGetConn:
    def test_select_one(self):
        from wagate.infra.db import txn

        with txn() as cur:
            cur.execute("SELECT 1")
            assert cur.fetchone() == (1,)
