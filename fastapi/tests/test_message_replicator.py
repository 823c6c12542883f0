import asyncio

import pytest

from conftest import replica_messages
from jobchat.errors import InvalidParticipants, PartialFanoutFailure
from jobchat.models.message import DeliveryStatus
from jobchat.repositories.message_repository import MessageRepository
from jobchat.utils.conversation_ids import canonical_conversation_id


CONV = canonical_conversation_id(["alice", "bob"], "J1")


@pytest.mark.asyncio
async def test_send_with_empty_content_writes_nothing(db, replicator):
    for content in ("", "   ", None):
        with pytest.raises(InvalidParticipants):
            await replicator.send(CONV, "alice", content)

    assert await db["messages"].count_documents({}) == 0
    assert await db["conversations"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_send_creates_conversation_and_fans_out(db, replicator, conversation_repo):
    message = await replicator.send(CONV, "alice", "  hi there  ")

    assert message.status == DeliveryStatus.SENT
    assert message.content == "hi there"
    assert message.read_by == []

    for owner in ("alice", "bob"):
        docs = await replica_messages(db, owner, CONV)
        assert len(docs) == 1
        assert docs[0]["message_id"] == message.id
        assert docs[0]["sender_id"] == "alice"
        assert docs[0]["status"] == "sent"

    alice = await conversation_repo.get("alice", CONV)
    bob = await conversation_repo.get("bob", CONV)
    assert alice.unread_for("alice") == 0
    assert bob.unread_for("bob") == 1
    assert bob.last_message.content == "hi there"
    assert bob.job_id == "J1"


@pytest.mark.asyncio
async def test_physical_ids_differ_but_logical_id_is_shared(db, replicator):
    message = await replicator.send(CONV, "alice", "hi")

    docs = await db["messages"].find({"message_id": message.id}).to_list(length=None)
    assert len(docs) == 2
    assert docs[0]["_id"] != docs[1]["_id"]


@pytest.mark.asyncio
async def test_preview_is_truncated(replicator, conversation_repo):
    await replicator.send(CONV, "alice", "x" * 50)

    replica = await conversation_repo.get("bob", CONV)
    assert replica.last_message.content == "x" * 20


@pytest.mark.asyncio
async def test_sender_must_be_participant(replicator):
    with pytest.raises(InvalidParticipants):
        await replicator.send(CONV, "mallory", "hi")


@pytest.mark.asyncio
async def test_unknown_malformed_id_is_rejected(replicator):
    with pytest.raises(InvalidParticipants):
        await replicator.send("not-a-conversation", "alice", "hi")


@pytest.mark.asyncio
async def test_concurrent_sends_do_not_lose_unread_increments(db, replicator, conversation_repo):
    from_alice, from_bob = 6, 9
    sends = [replicator.send(CONV, "alice", f"a{i}") for i in range(from_alice)]
    sends += [replicator.send(CONV, "bob", f"b{i}") for i in range(from_bob)]

    await asyncio.gather(*sends)

    for owner in ("alice", "bob"):
        replica = await conversation_repo.get(owner, CONV)
        assert replica.unread_counters["alice"] == from_bob
        assert replica.unread_counters["bob"] == from_alice
        assert len(await replica_messages(db, owner, CONV)) == from_alice + from_bob


@pytest.mark.asyncio
async def test_partial_fanout_failure_then_keyed_retry(db, replicator, conversation_repo, monkeypatch):
    original = MessageRepository.save_replica

    async def fail_for_bob(self, owner_id, message, dedupe_key=None):
        if owner_id == "bob":
            raise RuntimeError("replica write lost")
        return await original(self, owner_id, message, dedupe_key)

    monkeypatch.setattr(MessageRepository, "save_replica", fail_for_bob)

    with pytest.raises(PartialFanoutFailure) as info:
        await replicator.send(CONV, "alice", "hello", client_message_id="c-1")

    failed_message = info.value.message
    assert failed_message.status == DeliveryStatus.FAILED
    assert list(info.value.failed) == ["bob"]
    assert len(await replica_messages(db, "alice", CONV)) == 1
    assert await replica_messages(db, "bob", CONV) == []

    monkeypatch.setattr(MessageRepository, "save_replica", original)
    retried = await replicator.send(CONV, "alice", "hello", client_message_id="c-1")

    assert retried.id == failed_message.id
    for owner in ("alice", "bob"):
        docs = await replica_messages(db, owner, CONV)
        assert [d["message_id"] for d in docs] == [retried.id]
    bob = await conversation_repo.get("bob", CONV)
    assert bob.unread_for("bob") == 1


@pytest.mark.asyncio
async def test_keyed_resend_is_not_duplicated(db, replicator, conversation_repo):
    first = await replicator.send(CONV, "alice", "hello", client_message_id="c-9")
    second = await replicator.send(CONV, "alice", "hello", client_message_id="c-9")

    assert first.id == second.id
    assert len(await replica_messages(db, "bob", CONV)) == 1
    bob = await conversation_repo.get("bob", CONV)
    assert bob.unread_for("bob") == 1
