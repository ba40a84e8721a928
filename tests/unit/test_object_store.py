"""Unit tests for SQLiteObjectStore and SQLiteChunkStore."""

from __future__ import annotations

import asyncio
import sqlite3

import pytest

from src.models.content import ChunkCandidate, ObjectStatus, ObjectType
from src.providers.storage.sqlite_chunk_store import SQLiteChunkStore
from src.providers.storage.sqlite_object_store import SQLiteObjectStore


async def _parsed(store: SQLiteObjectStore, uri: str = "https://example.com/p") -> str:
    obj = await store.create(
        ObjectType.WEBPAGE, uri, title="Page", status=ObjectStatus.PARSED, cleaned_text="text"
    )
    return obj.id


# ─── Objects ──────────────────────────────────────────────────────


class TestObjectStore:
    @pytest.mark.asyncio
    async def test_create_and_lookup(self, object_store: SQLiteObjectStore) -> None:
        obj = await object_store.create(
            ObjectType.PDF_DOCUMENT,
            "/data/pdfs/abc.pdf",
            title="Doc",
            file_hash="abc",
            file_size_bytes=1234,
        )
        assert obj.status == ObjectStatus.NEW
        assert (await object_store.get_by_id(obj.id)).title == "Doc"
        assert (await object_store.get_by_source_uri("/data/pdfs/abc.pdf")).id == obj.id
        assert (await object_store.find_by_file_hash("abc")).id == obj.id
        assert await object_store.find_by_file_hash("nope") is None

    @pytest.mark.asyncio
    async def test_source_uri_is_unique(self, object_store: SQLiteObjectStore) -> None:
        await object_store.create(ObjectType.WEBPAGE, "https://example.com/dup")
        with pytest.raises(sqlite3.IntegrityError):
            await object_store.create(ObjectType.WEBPAGE, "https://example.com/dup")

    @pytest.mark.asyncio
    async def test_unknown_fields_rejected(self, object_store: SQLiteObjectStore) -> None:
        with pytest.raises(ValueError, match="Unknown object fields"):
            await object_store.create(ObjectType.WEBPAGE, "https://example.com/x", colour="red")

    @pytest.mark.asyncio
    async def test_update_and_update_status(self, object_store: SQLiteObjectStore) -> None:
        obj = await object_store.create(ObjectType.WEBPAGE, "https://example.com/u")
        assert await object_store.update(obj.id, summary="short", status=ObjectStatus.FETCHED)
        assert await object_store.update_status(obj.id, ObjectStatus.ERROR, "boom")

        row = await object_store.get_by_id(obj.id)
        assert row.summary == "short"
        assert row.status == ObjectStatus.ERROR
        assert row.error_info == "boom"

        await object_store.update_status(obj.id, ObjectStatus.PARSED)
        assert (await object_store.get_by_id(obj.id)).error_info is None

    @pytest.mark.asyncio
    async def test_claim_only_from_parsed(self, object_store: SQLiteObjectStore) -> None:
        object_id = await _parsed(object_store)
        assert await object_store.claim_for_embedding(object_id) is True
        assert (await object_store.get_by_id(object_id)).status == ObjectStatus.EMBEDDING
        assert await object_store.claim_for_embedding(object_id) is False

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(
        self, object_store: SQLiteObjectStore
    ) -> None:
        object_id = await _parsed(object_store)
        results = await asyncio.gather(
            *(object_store.claim_for_embedding(object_id) for _ in range(5))
        )
        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_find_by_status_oldest_first(self, object_store: SQLiteObjectStore) -> None:
        first = await _parsed(object_store, "https://example.com/1")
        second = await _parsed(object_store, "https://example.com/2")
        await object_store.create(ObjectType.WEBPAGE, "https://example.com/3")

        found = await object_store.find_by_status([ObjectStatus.PARSED])
        assert {o.id for o in found} == {first, second}
        assert len(await object_store.find_by_status([ObjectStatus.PARSED], limit=1)) == 1
        assert await object_store.find_by_status([]) == []

    @pytest.mark.asyncio
    async def test_reset_status_scoped_to_ids(self, object_store: SQLiteObjectStore) -> None:
        a = await _parsed(object_store, "https://example.com/a")
        b = await _parsed(object_store, "https://example.com/b")
        for oid in (a, b):
            await object_store.update_status(oid, ObjectStatus.EMBEDDING_FAILED, "err")

        moved = await object_store.reset_status(
            ObjectStatus.EMBEDDING_FAILED, ObjectStatus.PARSED, object_ids=[a]
        )
        assert moved == [a]
        assert (await object_store.get_by_id(a)).status == ObjectStatus.PARSED
        assert (await object_store.get_by_id(a)).error_info is None
        assert (await object_store.get_by_id(b)).status == ObjectStatus.EMBEDDING_FAILED

        assert await object_store.reset_status(
            ObjectStatus.EMBEDDING_FAILED, ObjectStatus.PARSED, object_ids=[]
        ) == []

    @pytest.mark.asyncio
    async def test_delete_cascades_to_chunks(
        self, object_store: SQLiteObjectStore, chunk_store: SQLiteChunkStore
    ) -> None:
        object_id = await _parsed(object_store)
        await chunk_store.add_chunks_bulk(object_id, [ChunkCandidate(chunk_idx=0, content="a")])

        assert await object_store.delete(object_id) is True
        assert await chunk_store.list_by_object_id(object_id) == []
        assert await object_store.delete(object_id) is False


# ─── Chunks ───────────────────────────────────────────────────────


class TestChunkStore:
    @pytest.mark.asyncio
    async def test_bulk_insert_in_index_order(
        self, object_store: SQLiteObjectStore, chunk_store: SQLiteChunkStore
    ) -> None:
        object_id = await _parsed(object_store)
        records = await chunk_store.add_chunks_bulk(
            object_id,
            [
                ChunkCandidate(chunk_idx=1, content="second", tags=["b"]),
                ChunkCandidate(chunk_idx=0, content="first", propositions=["p"]),
            ],
        )
        assert [r.chunk_idx for r in records] == [0, 1]
        assert records[0].propositions_json == '["p"]'
        assert records[1].tags_json == '["b"]'
        assert all(r.id > 0 for r in records)

    @pytest.mark.asyncio
    async def test_rewrite_replaces_and_trims(
        self, object_store: SQLiteObjectStore, chunk_store: SQLiteChunkStore
    ) -> None:
        object_id = await _parsed(object_store)
        await chunk_store.add_chunks_bulk(
            object_id, [ChunkCandidate(chunk_idx=i, content=f"old {i}") for i in range(3)]
        )
        await chunk_store.add_chunks_bulk(
            object_id, [ChunkCandidate(chunk_idx=0, content="new 0")]
        )

        records = await chunk_store.list_by_object_id(object_id)
        assert [(r.chunk_idx, r.content) for r in records] == [(0, "new 0")]

    @pytest.mark.asyncio
    async def test_delete_by_object_id(
        self, object_store: SQLiteObjectStore, chunk_store: SQLiteChunkStore
    ) -> None:
        object_id = await _parsed(object_store)
        await chunk_store.add_chunks_bulk(
            object_id, [ChunkCandidate(chunk_idx=i, content=str(i)) for i in range(2)]
        )
        assert await chunk_store.delete_by_object_id(object_id) == 2
        assert await chunk_store.delete_by_object_id(object_id) == 0
