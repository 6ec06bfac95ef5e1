import asyncio

import pytest

from waste_rewards.core.errors import DocumentNotFound, PreconditionFailed, TransactionAborted
from waste_rewards.services.document_store import REPORTS, matches_expected, namespaced
from waste_rewards.services.memory_store import InMemoryDocumentStore


def test_namespaced_collection_names():
    assert namespaced("app-1", REPORTS) == "artifacts.app-1.reports"


def test_matches_expected_supports_any_of():
    data = {"status": "Rejected", "pickerId": None}
    assert matches_expected(data, {"status": ("Reported", "Rejected"), "pickerId": None})
    assert not matches_expected(data, {"status": "Reported"})
    assert not matches_expected(None, {"status": "Reported"})
    assert matches_expected(None, None)


async def test_set_get_and_add(store):
    await store.set(REPORTS, "r1", {"status": "Reported"})
    snap = await store.get(REPORTS, "r1")
    assert snap.exists and snap.get("status") == "Reported"

    new_id = await store.add(REPORTS, {"status": "Claimed"})
    assert (await store.get(REPORTS, new_id)).get("status") == "Claimed"
    assert not (await store.get(REPORTS, "missing")).exists


async def test_snapshots_are_copies(store):
    await store.set(REPORTS, "r1", {"location": {"lat": 1.0, "lon": 2.0}})
    snap = await store.get(REPORTS, "r1")
    snap.data["location"]["lat"] = 99.0
    assert (await store.get(REPORTS, "r1")).get("location") == {"lat": 1.0, "lon": 2.0}


async def test_conditional_update_leaves_document_unchanged_on_mismatch(store):
    await store.set(REPORTS, "r1", {"status": "Claimed", "pickerId": "p1"})

    with pytest.raises(PreconditionFailed):
        await store.update(REPORTS, "r1", {"status": "Claimed", "pickerId": "p2"}, expected={"status": "Reported"})

    assert (await store.get(REPORTS, "r1")).data == {"status": "Claimed", "pickerId": "p1"}

    await store.update(REPORTS, "r1", {"status": "Pending Review"}, expected={"pickerId": "p1"})
    assert (await store.get(REPORTS, "r1")).get("status") == "Pending Review"


async def test_update_missing_document(store):
    with pytest.raises(DocumentNotFound):
        await store.update(REPORTS, "nope", {"status": "Claimed"})


async def test_namespaces_do_not_share_documents():
    a = InMemoryDocumentStore(namespace="a")
    b = InMemoryDocumentStore(namespace="b")
    await a.set(REPORTS, "r1", {"status": "Reported"})
    assert a._key(REPORTS, "r1") != b._key(REPORTS, "r1")
    assert not (await b.get(REPORTS, "r1")).exists


async def test_transaction_commits_all_writes(store):
    await store.set("profiles", "u1", {"points": 1})
    await store.set("profiles", "u2", {"points": 2})

    async def body(tx):
        one = await tx.get("profiles", "u1")
        two = await tx.get("profiles", "u2")
        tx.update("profiles", "u1", {"points": one.get("points") + 10})
        tx.update("profiles", "u2", {"points": two.get("points") + 30})
        return "done"

    assert await store.run_transaction(body) == "done"
    assert (await store.get("profiles", "u1")).get("points") == 11
    assert (await store.get("profiles", "u2")).get("points") == 32


async def test_transaction_body_error_has_no_effect(store):
    await store.set("profiles", "u1", {"points": 1})

    async def body(tx):
        tx.update("profiles", "u1", {"points": 500})
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await store.run_transaction(body)
    assert (await store.get("profiles", "u1")).get("points") == 1


async def test_transaction_update_of_missing_document_applies_nothing(store):
    await store.set("profiles", "u1", {"points": 1})

    async def body(tx):
        tx.update("profiles", "u1", {"points": 2})
        tx.update("profiles", "ghost", {"points": 3})

    with pytest.raises(DocumentNotFound):
        await store.run_transaction(body)
    assert (await store.get("profiles", "u1")).get("points") == 1


async def test_transaction_retries_after_concurrent_write(store):
    await store.set("profiles", "u1", {"points": 0})
    attempts = []

    async def body(tx):
        snap = await tx.get("profiles", "u1")
        attempts.append(snap.get("points"))
        if len(attempts) == 1:
            # Another writer lands between our read and our commit
            await store.update("profiles", "u1", {"points": 5})
        tx.update("profiles", "u1", {"points": snap.get("points") + 1})

    await store.run_transaction(body)
    assert attempts == [0, 5]
    assert (await store.get("profiles", "u1")).get("points") == 6


async def test_transaction_aborts_after_max_attempts(store):
    await store.set("profiles", "u1", {"points": 0})
    calls = 0

    async def body(tx):
        nonlocal calls
        calls += 1
        snap = await tx.get("profiles", "u1")
        await store.update("profiles", "u1", {"other": calls})
        tx.update("profiles", "u1", {"points": snap.get("points") + 100})

    with pytest.raises(TransactionAborted):
        await store.run_transaction(body, max_attempts=3)
    assert calls == 3
    assert (await store.get("profiles", "u1")).get("points") == 0


async def test_document_watch_yields_initial_and_updates(store):
    stream = store.watch_document("profiles", "u1")
    first = await stream.__anext__()
    assert not first.exists

    await store.set("profiles", "u1", {"name": "Asha"})
    second = await asyncio.wait_for(stream.__anext__(), timeout=1)
    assert second.get("name") == "Asha"

    await stream.aclose()
    assert store.watcher_count() == 0


async def test_collection_watch_is_lazy_and_releases(store):
    stream = store.watch_collection(REPORTS)
    assert store.watcher_count() == 0

    initial = await stream.__anext__()
    assert len(initial) == 0
    assert store.watcher_count() == 1

    await store.add(REPORTS, {"status": "Reported"})
    update = await asyncio.wait_for(stream.__anext__(), timeout=1)
    assert len(update) == 1

    await stream.aclose()
    assert store.watcher_count() == 0


async def test_collection_watch_restartable(store):
    await store.add(REPORTS, {"status": "Reported"})
    for _ in range(2):
        stream = store.watch_collection(REPORTS)
        snapshot = await stream.__anext__()
        assert len(snapshot) == 1
        await stream.aclose()
    assert store.watcher_count() == 0
