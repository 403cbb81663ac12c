"""Shared fixtures: in-memory DuckDB, fake model backend, fake database."""

import json

import pytest
import pytest_asyncio

from duckdb_mcp.config import Settings, reset_settings
from duckdb_mcp.db.connection import DuckDBManager
from duckdb_mcp.llm.stream import collect_completion


def delta_event(text: str) -> dict:
    """A Bedrock response-stream event carrying one text delta."""
    payload = {
        "type": "content_block_delta",
        "index": 0,
        "delta": {"type": "text_delta", "text": text},
    }
    return {"chunk": {"bytes": json.dumps(payload).encode("utf-8")}}


def control_event(event_type: str = "message_start") -> dict:
    """A stream event without a text delta."""
    return {"chunk": {"bytes": json.dumps({"type": event_type}).encode("utf-8")}}


class FakeModel:
    """Stands in for BedrockStreamer; replays a fixed list of events."""

    def __init__(self, events: list):
        self.events = events
        self.calls: list[tuple[list, int | None]] = []

    async def stream(self, messages, max_tokens=None):
        self.calls.append((messages, max_tokens))
        for event in self.events:
            yield event

    async def complete(self, messages, max_tokens=None) -> str:
        return await collect_completion(self.stream(messages, max_tokens))


class FakeDatabase:
    """Stands in for DuckDBManager; answers every query with canned rows."""

    def __init__(self, rows: list[dict] | None = None):
        self.rows = rows or []
        self.queries: list[tuple[str, int | None]] = []
        self.is_open = True

    async def query(self, sql: str, max_rows: int | None = None) -> list[dict]:
        self.queries.append((sql, max_rows))
        return self.rows if max_rows is None else self.rows[:max_rows]

    async def initialize(self, db_path: str = ":memory:") -> None:
        self.is_open = True

    async def close(self) -> None:
        self.is_open = False


@pytest.fixture(autouse=True)
def _reset_settings():
    """Never leak cached settings between tests."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> Settings:
    return Settings(database_path=":memory:")


@pytest_asyncio.fixture
async def database():
    """An open, empty in-memory database."""
    db = DuckDBManager()
    await db.initialize(":memory:")
    yield db
    await db.close()


@pytest_asyncio.fixture
async def trip_database(database):
    """In-memory database with a small tripdata table."""
    await database.query(
        "CREATE TABLE tripdata ("
        " vendor_id INTEGER NOT NULL,"
        " trip_distance DOUBLE,"
        " pickup_month VARCHAR DEFAULT 'January'"
        ")"
    )
    await database.query(
        "INSERT INTO tripdata VALUES (1, 2.5, 'January'), (2, 7.1, 'February'), (1, 0.8, 'March')"
    )
    return database
