import asyncio
from datetime import datetime, timezone

import pytest

from jobchat.errors import PartialFanoutFailure
from jobchat.repositories.conversation_repository import ConversationRepository
from jobchat.schemas.chat import LastMessage
from jobchat.utils.conversation_ids import canonical_conversation_id


def _preview(sender_id: str, content: str = "hello") -> LastMessage:
    return LastMessage(content=content, sender_id=sender_id, created_at=datetime.now(timezone.utc))


@pytest.mark.asyncio
async def test_create_writes_one_replica_per_participant(conversation_repo):
    created = await conversation_repo.create(["bob", "alice"], "J1")

    assert created.id == canonical_conversation_id(["alice", "bob"], "J1")
    for participant in ("alice", "bob"):
        replica = await conversation_repo.get(participant, created.id)
        assert replica is not None
        assert replica.id == created.id
        assert replica.owner_id == participant
        assert replica.participants == ["alice", "bob"]
        assert replica.job_id == "J1"
        assert replica.unread_for(participant) == 0
        assert replica.unread_counters == {"alice": 0, "bob": 0}


@pytest.mark.asyncio
async def test_get_only_reads_callers_replica(conversation_repo):
    created = await conversation_repo.create(["alice", "bob"])
    assert await conversation_repo.get("carol", created.id) is None
    assert await conversation_repo.get("alice", "direct|alice|zed") is None


@pytest.mark.asyncio
async def test_create_again_keeps_existing_counters(conversation_repo):
    created = await conversation_repo.create(["alice", "bob"])
    await conversation_repo.touch(created.id, ["alice", "bob"], _preview("alice"), ["bob"])

    await conversation_repo.create(["alice", "bob"])

    replica = await conversation_repo.get("bob", created.id)
    assert replica.unread_for("bob") == 1


@pytest.mark.asyncio
async def test_touch_updates_preview_everywhere_and_counts_recipients_only(conversation_repo):
    created = await conversation_repo.create(["alice", "bob"])

    await conversation_repo.touch(created.id, ["alice", "bob"], _preview("alice", "first"), ["bob"])
    await conversation_repo.touch(created.id, ["alice", "bob"], _preview("alice", "second"), ["bob"])

    for owner in ("alice", "bob"):
        replica = await conversation_repo.get(owner, created.id)
        assert replica.last_message.content == "second"
        assert replica.last_message.sender_id == "alice"
        assert replica.unread_counters["bob"] == 2
        assert replica.unread_counters["alice"] == 0


@pytest.mark.asyncio
async def test_reset_unread_only_touches_own_counter(conversation_repo):
    created = await conversation_repo.create(["alice", "bob"])
    await conversation_repo.touch(created.id, ["alice", "bob"], _preview("alice"), ["bob"])
    await conversation_repo.touch(created.id, ["alice", "bob"], _preview("bob"), ["alice"])

    await conversation_repo.reset_unread("bob", created.id, ["alice", "bob"])

    for owner in ("alice", "bob"):
        replica = await conversation_repo.get(owner, created.id)
        assert replica.unread_counters["bob"] == 0
        assert replica.unread_counters["alice"] == 1


@pytest.mark.asyncio
async def test_touch_recreates_missing_replica(db, conversation_repo):
    created = await conversation_repo.create(["alice", "bob"])
    await db["conversations"].delete_one({"conversation_id": created.id, "owner_id": "bob"})

    await conversation_repo.touch(created.id, ["alice", "bob"], _preview("alice"), ["bob"])

    replica = await conversation_repo.get("bob", created.id)
    assert replica is not None
    assert replica.participants == ["alice", "bob"]
    assert replica.unread_for("bob") == 1


@pytest.mark.asyncio
async def test_list_for_orders_by_most_recent_update(conversation_repo):
    older = await conversation_repo.create(["alice", "bob"])
    await asyncio.sleep(0.01)
    newer = await conversation_repo.create(["alice", "carol"])
    await conversation_repo.create(["bob", "carol"])

    items, _ = await conversation_repo.list_for("alice")
    assert [c.id for c in items] == [newer.id, older.id]

    await asyncio.sleep(0.01)
    await conversation_repo.touch(older.id, ["alice", "bob"], _preview("bob"), ["alice"])

    items, _ = await conversation_repo.list_for("alice")
    assert [c.id for c in items] == [older.id, newer.id]


@pytest.mark.asyncio
async def test_list_for_returns_cursor_when_page_is_full(conversation_repo):
    await conversation_repo.create(["alice", "bob"])
    await conversation_repo.create(["alice", "carol"])

    items, next_cursor = await conversation_repo.list_for("alice", limit=1)
    assert len(items) == 1
    assert next_cursor is not None

    items, next_cursor = await conversation_repo.list_for("alice", limit=5)
    assert len(items) == 2
    assert next_cursor is None


@pytest.mark.asyncio
async def test_partial_create_leaves_successful_replicas(db, monkeypatch):
    repo = ConversationRepository(db)
    original = repo._insert_replica

    async def flaky_insert(conversation_id, owner_id, base):
        if owner_id == "bob":
            raise RuntimeError("write rejected")
        return await original(conversation_id, owner_id, base)

    monkeypatch.setattr(repo, "_insert_replica", flaky_insert)

    with pytest.raises(PartialFanoutFailure) as info:
        await repo.create(["alice", "bob"])

    assert info.value.succeeded == ["alice"]
    assert await repo.get("alice", "direct|alice|bob") is not None
    assert await repo.get("bob", "direct|alice|bob") is None
