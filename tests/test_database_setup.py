import database


class FakeCursor:
    def __init__(self):
        self.executed = []
        self.closed = False

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def close(self):
        self.closed = True


class FakeConn:
    def __init__(self):
        self.cursor_obj = FakeCursor()
        self.commit_calls = 0

    def cursor(self, cursor_factory=None):  # noqa: ARG002 - matches psycopg2 signature
        return self.cursor_obj

    def commit(self):
        self.commit_calls += 1


def test_setup_database_creates_tables_and_provisions_states():
    conn = FakeConn()

    database.setup_database(conn)

    statements = [query for query, _ in conn.cursor_obj.executed]
    for table in (
        "mangadex_crawl_state",
        "manga",
        "manga_external_ids",
        "mangadex_delta_log",
        "manga_art_jobs",
        "mangadex_recent_chapters",
        "sync_run_reports",
    ):
        assert any(f"CREATE TABLE IF NOT EXISTS {table} (" in sql for sql in statements)

    provisioned = [params for query, params in conn.cursor_obj.executed if "INSERT INTO mangadex_crawl_state" in query]
    assert [(state_id, mode) for state_id, mode, _ in provisioned] == [
        ("main", "offset"),
        ("titles_delta", "updatedat"),
        ("recent_chapters", "updatedat"),
    ]
    assert all("ON CONFLICT (id) DO NOTHING" in query for query, _ in conn.cursor_obj.executed if "INSERT" in query)
    assert conn.cursor_obj.closed is True
    assert conn.commit_calls == 1


def test_create_connection_uses_database_url_in_utc(monkeypatch):
    calls = {}
    sentinel = object()

    def fake_connect(**kwargs):
        calls.update(kwargs)
        return sentinel

    monkeypatch.setattr(database.config, "DATABASE_URL", "postgres://example")
    monkeypatch.setattr(database.psycopg2, "connect", fake_connect)

    assert database.create_standalone_connection() is sentinel
    assert calls == {"dsn": "postgres://example", "options": "-c timezone=UTC"}


def test_create_connection_uses_individual_vars(monkeypatch):
    calls = {}

    monkeypatch.setattr(database.config, "DATABASE_URL", None)
    monkeypatch.setattr(database.config, "DB_NAME", "catalog")
    monkeypatch.setattr(database.config, "DB_HOST", "db.local")
    monkeypatch.setattr(database.psycopg2, "connect", lambda **kwargs: calls.update(kwargs))

    database.create_standalone_connection()

    assert calls["dbname"] == "catalog"
    assert calls["host"] == "db.local"
    assert calls["options"] == "-c timezone=UTC"


def test_managed_cursor_closes_on_exception(monkeypatch):
    cursor = FakeCursor()
    monkeypatch.setattr(database, "get_cursor", lambda _conn: cursor)

    try:
        with database.managed_cursor(conn=object()) as managed:
            assert managed is cursor
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    assert cursor.closed is True
