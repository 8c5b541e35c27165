"""Tests for CommentThread."""

import pytest

from lovestory.protocols import NotFoundError, UnauthorizedError, ValidationError
from lovestory.types import COMMENTS_TABLE

ALICE = "user-alice"
BOB = "user-bob"


class TestAdd:
    @pytest.mark.asyncio
    async def test_appends_confirmed_comment(self, comments, memories, store, seed_memory):
        row = seed_memory(BOB)
        await memories.fetch_many(ALICE)

        comment = await comments.add(ALICE, row["id"], "What a day!")

        assert comment.user_name == "Alice"
        assert [c.id for c in memories.get_cached(row["id"]).comments] == [comment.id]
        assert store.rows(COMMENTS_TABLE)[0]["content"] == "What a day!"

    @pytest.mark.asyncio
    async def test_blank_content_rejected_before_network(self, comments, store, seed_memory):
        row = seed_memory(BOB)

        with pytest.raises(ValidationError):
            await comments.add(ALICE, row["id"], "   ")

        assert store.calls == []

    @pytest.mark.asyncio
    async def test_overlong_content_rejected(self, comments, seed_memory):
        row = seed_memory(BOB)
        with pytest.raises(ValidationError):
            await comments.add(ALICE, row["id"], "x" * 2001)

    @pytest.mark.asyncio
    async def test_control_characters_stripped(self, comments, seed_memory):
        row = seed_memory(BOB)
        comment = await comments.add(ALICE, row["id"], "hi\x00 there")
        assert comment.content == "hi there"

    @pytest.mark.asyncio
    async def test_requires_viewer(self, comments, seed_memory):
        row = seed_memory(BOB)
        with pytest.raises(UnauthorizedError):
            await comments.add(None, row["id"], "hello")


class TestRemove:
    @pytest.mark.asyncio
    async def test_removes_own_comment(self, comments, memories, store, seed_memory):
        row = seed_memory(BOB)
        mine = store.seed(COMMENTS_TABLE, memory_id=row["id"], user_id=ALICE, content="Mine")
        store.seed(COMMENTS_TABLE, memory_id=row["id"], user_id=BOB, content="Bob's")
        await memories.fetch_many(ALICE)

        await comments.remove(ALICE, mine["id"])

        assert [c.content for c in memories.get_cached(row["id"]).comments] == ["Bob's"]
        assert [c["content"] for c in store.rows(COMMENTS_TABLE)] == ["Bob's"]

    @pytest.mark.asyncio
    async def test_cannot_remove_someone_elses_cached_comment(
        self, comments, memories, store, seed_memory
    ):
        row = seed_memory(BOB)
        theirs = store.seed(COMMENTS_TABLE, memory_id=row["id"], user_id=BOB, content="Bob's")
        await memories.fetch_many(ALICE)
        calls_before = len(store.calls)

        with pytest.raises(UnauthorizedError):
            await comments.remove(ALICE, theirs["id"])

        assert len(store.calls) == calls_before
        assert len(store.rows(COMMENTS_TABLE)) == 1

    @pytest.mark.asyncio
    async def test_uncached_foreign_comment_is_not_found(self, comments, store, seed_memory):
        row = seed_memory(BOB)
        theirs = store.seed(COMMENTS_TABLE, memory_id=row["id"], user_id=BOB, content="Bob's")

        with pytest.raises(NotFoundError):
            await comments.remove(ALICE, theirs["id"])

        assert len(store.rows(COMMENTS_TABLE)) == 1
