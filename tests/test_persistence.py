"""Persistence adapter, storage and history service tests with a fake Supabase client."""

from __future__ import annotations

import asyncio
from io import BytesIO
from types import SimpleNamespace

from PIL import Image

from config.settings import AppConfig
from modules.services import persistence as persistence_module
from modules.services.history_service import GenerationHistoryService
from modules.services.persistence import PersistenceAdapter, create_persistence
from modules.services.storage_service import StorageService


class FakeQuery:
    def __init__(self, client: "FakeSupabase", table: str) -> None:
        self.client = client
        self.table = table
        self.action = "select"
        self.payload = None
        self.filters = []
        self.ordering = None

    def insert(self, row):
        self.action = "insert"
        self.payload = row
        return self

    def select(self, columns):
        self.action = "select"
        return self

    def update(self, values):
        self.action = "update"
        self.payload = values
        return self

    def in_(self, column, values):
        self.filters.append((column, tuple(values)))
        return self

    def delete(self):
        self.action = "delete"
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.ordering = (column, desc)
        return self

    def execute(self):
        self.client.executed.append((self.table, self.action, self.payload, tuple(self.filters), self.ordering))
        if self.client.fail:
            raise RuntimeError("network down")
        if self.action == "insert":
            row = dict(self.payload, id=f"{self.table}-1", created_at="2024-05-01T10:00:00+00:00")
            return SimpleNamespace(data=[row])
        if self.action == "select":
            return SimpleNamespace(data=list(self.client.rows.get(self.table, [])))
        return SimpleNamespace(data=[])


class FakeBucket:
    def __init__(self, client: "FakeSupabase", name: str) -> None:
        self.client = client
        self.name = name

    def upload(self, path, payload, options):
        if self.client.fail:
            raise RuntimeError("upload refused")
        self.client.uploads.append((self.name, path, payload, options))

    def get_public_url(self, path):
        return f"https://cdn.test/{self.name}/{path}"


class FakeSupabase:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.executed = []
        self.uploads = []
        self.rows = {}
        self.storage = SimpleNamespace(from_=lambda name: FakeBucket(self, name))

    def table(self, name):
        return FakeQuery(self, name)


def build_adapter(client: FakeSupabase) -> PersistenceAdapter:
    storage = StorageService(client, "generated-images", clock=lambda: 1700000000.5)
    return PersistenceAdapter(storage, GenerationHistoryService(client), user_id="user-1")


def png_bytes() -> bytes:
    buffer = BytesIO()
    Image.new("RGBA", (3000, 1500), (0, 0, 0, 0)).save(buffer, format="PNG")
    return buffer.getvalue()


def test_upload_compresses_and_returns_public_url():
    client = FakeSupabase()
    url = asyncio.run(build_adapter(client).upload(png_bytes()))

    assert url == "https://cdn.test/generated-images/user-1/1700000000500.jpg"
    bucket, path, payload, options = client.uploads[0]
    assert options["content-type"] == "image/jpeg"
    with Image.open(BytesIO(payload)) as image:
        assert image.format == "JPEG"
        assert image.width == 2048


def test_record_metadata_maps_row():
    client = FakeSupabase()
    item = asyncio.run(
        build_adapter(client).record_metadata("https://u", "prompt", "HUMAN", "LANDING_PAGES", "p1")
    )

    assert item.id == "generations-1"
    assert item.project_id == "p1"
    assert item.timestamp > 0
    table, action, payload, _, _ = client.executed[0]
    assert (table, action) == ("generations", "insert")
    assert payload["user_id"] == "user-1"


def test_list_by_project_orders_newest_first():
    client = FakeSupabase()
    client.rows["generations"] = [
        {"id": 1, "image_url": "u", "prompt": "p", "created_at": "2024-05-01T10:00:00Z", "mode": "HUMAN", "section": "LANDING_PAGES", "project_id": "p1"},
    ]
    items = asyncio.run(build_adapter(client).list_by_project("p1"))

    assert [item.id for item in items] == ["1"]
    _, _, _, filters, ordering = client.executed[0]
    assert filters == (("project_id", "p1"),)
    assert ordering == ("created_at", True)


def test_delete_project_removes_generations_first():
    client = FakeSupabase()
    assert asyncio.run(build_adapter(client).delete_project("p1")) is True

    assert [(entry[0], entry[1]) for entry in client.executed] == [
        ("generations", "delete"),
        ("projects", "delete"),
    ]


def test_failures_never_raise():
    adapter = build_adapter(FakeSupabase(fail=True))

    async def scenario():
        return (
            await adapter.upload(png_bytes()),
            await adapter.record_metadata("u", "p", "HUMAN", "LANDING_PAGES"),
            await adapter.list_by_user(),
            await adapter.create_project("name", "HUMAN", "LANDING_PAGES"),
            await adapter.delete_project("p1"),
        )

    assert asyncio.run(scenario()) == (None, None, [], None, False)


def test_missing_user_skips_backend():
    client = FakeSupabase()
    adapter = PersistenceAdapter(
        StorageService(client), GenerationHistoryService(client), user_id=None
    )

    assert asyncio.run(adapter.upload(b"x")) is None
    assert client.executed == [] and client.uploads == []


def test_create_persistence_requires_configuration(monkeypatch):
    assert create_persistence(AppConfig()) is None

    created = []
    monkeypatch.setattr(
        persistence_module,
        "create_client",
        lambda url, key: created.append((url, key)) or FakeSupabase(),
    )
    adapter = create_persistence(
        AppConfig(supabase_url="https://x.supabase.co", supabase_key="k", supabase_user_id="u")
    )

    assert isinstance(adapter, PersistenceAdapter)
    assert created == [("https://x.supabase.co", "k")]
    assert adapter.user_id == "u"


def test_assign_project_updates_generation_rows():
    client = FakeSupabase()

    assert asyncio.run(build_adapter(client).assign_project(["g1", "g2"], "p1")) is True
    assert client.executed == [
        ("generations", "update", {"project_id": "p1"}, (("id", ("g1", "g2")),), None)
    ]
    assert asyncio.run(build_adapter(FakeSupabase(fail=True)).assign_project(["g1"], "p1")) is False
