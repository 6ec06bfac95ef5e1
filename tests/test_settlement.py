import asyncio

import pytest

from conftest import HERE, PHOTO_URL, PROOF_URL, FakeAdvisory
from waste_rewards.core.errors import DocumentNotFound, PreconditionFailed, TransactionAborted, TransitionDenied
from waste_rewards.models.profile_model import ProfileSetupRequest, Role
from waste_rewards.models.report_model import ReportStatus
from waste_rewards.services.document_store import PROFILES, REPORTS
from waste_rewards.services.memory_store import InMemoryDocumentStore, TransactionConflict
from waste_rewards.services.profile_service import ProfileService
from waste_rewards.services.report_lifecycle import ReportLifecycleEngine


class ConflictingStore(InMemoryDocumentStore):
    """Fails the first ``conflicts`` transaction commits as if another writer got there first."""

    def __init__(self, conflicts: int, **kwargs):
        super().__init__(**kwargs)
        self.conflicts = conflicts
        self.commits = 0

    async def _commit(self, tx):
        if tx.writes and any(key[0].endswith(".reports") for _, key, _ in tx.writes):
            self.commits += 1
            if self.commits <= self.conflicts:
                raise TransactionConflict("simulated concurrent write")
        await super()._commit(tx)


class YieldingStore(InMemoryDocumentStore):
    """Yields to the loop before every commit so concurrent transactions interleave."""

    async def _commit(self, tx):
        await asyncio.sleep(0)
        await super()._commit(tx)


async def _setup(store, base_reward_reply="10"):
    profiles = ProfileService(store)
    engine = ReportLifecycleEngine(store, FakeAdvisory(reply=base_reward_reply), max_attempts=3)
    reporter = await profiles.create_profile("reporter-1", ProfileSetupRequest(name="Asha", role=Role.REPORTER))
    picker = await profiles.create_profile("picker-1", ProfileSetupRequest(name="Ravi", role=Role.PICKER))
    monitor = await profiles.create_profile("monitor-1", ProfileSetupRequest(name="Das", role=Role.MONITOR))
    return engine, reporter, picker, monitor


async def _pending(engine, reporter, picker):
    report = await engine.create_report(reporter, PHOTO_URL, HERE)
    await engine.claim_report(picker, report.id)
    await engine.submit_proof(picker, report.id, PROOF_URL, HERE)
    return report.id


async def _points(store, user_id):
    snap = await store.get(PROFILES, user_id)
    return snap.get("totalReporterPoints"), snap.get("totalPickerPoints")


async def test_aborted_settlement_changes_nothing():
    store = ConflictingStore(conflicts=99, namespace="t")
    engine, reporter, picker, monitor = await _setup(store)
    report_id = await _pending(engine, reporter, picker)
    before = (await store.get(REPORTS, report_id)).data

    with pytest.raises(TransactionAborted):
        await engine.approve_report(monitor, report_id)

    assert (await store.get(REPORTS, report_id)).data == before
    assert await _points(store, reporter.userId) == (0, 0)
    assert await _points(store, picker.userId) == (0, 0)
    assert store.commits == 3


async def test_settlement_retried_after_conflict_credits_once():
    store = ConflictingStore(conflicts=2, namespace="t")
    engine, reporter, picker, monitor = await _setup(store)
    report_id = await _pending(engine, reporter, picker)

    settlement = await engine.approve_report(monitor, report_id)

    assert settlement.report.status == ReportStatus.COMPLETED
    assert await _points(store, reporter.userId) == (10, 0)
    assert await _points(store, picker.userId) == (0, 30)


@pytest.mark.parametrize("reply, reporter_reward", [("10", 10), ("7", 7), ("40", 40), ("n/a", 10)])
async def test_picker_reward_is_three_times_reporter_reward(reply, reporter_reward):
    store = InMemoryDocumentStore(namespace="t")
    engine, reporter, picker, monitor = await _setup(store, reply)
    report_id = await _pending(engine, reporter, picker)

    settlement = await engine.approve_report(monitor, report_id)

    assert settlement.rewards.reporter == reporter_reward
    assert settlement.rewards.picker == 3 * reporter_reward
    assert await _points(store, reporter.userId) == (reporter_reward, 0)
    assert await _points(store, picker.userId) == (0, 3 * reporter_reward)


async def test_unset_base_reward_defaults_to_ten():
    store = InMemoryDocumentStore(namespace="t")
    engine, reporter, picker, monitor = await _setup(store)
    report_id = await _pending(engine, reporter, picker)
    await store.update(REPORTS, report_id, {"baseReward": None})

    settlement = await engine.approve_report(monitor, report_id)
    assert (settlement.rewards.reporter, settlement.rewards.picker) == (10, 30)


async def test_flags_stay_set_and_second_approval_is_denied():
    store = InMemoryDocumentStore(namespace="t")
    engine, reporter, picker, monitor = await _setup(store)
    report_id = await _pending(engine, reporter, picker)
    await engine.approve_report(monitor, report_id)

    with pytest.raises(TransitionDenied):
        await engine.approve_report(monitor, report_id)

    for _ in range(3):
        report = await engine.get_report(report_id)
        assert report.reporterRewardIssued is True
        assert report.pickerRewardIssued is True
    assert await _points(store, reporter.userId) == (10, 0)
    assert await _points(store, picker.userId) == (0, 30)


async def test_settlement_rechecks_state_inside_transaction():
    store = InMemoryDocumentStore(namespace="t")
    engine, reporter, picker, monitor = await _setup(store)
    report_id = await _pending(engine, reporter, picker)
    # Flags already set by some earlier run while status was left behind
    await store.update(REPORTS, report_id, {"reporterRewardIssued": True})

    with pytest.raises(TransitionDenied):
        await engine.approve_report(monitor, report_id)
    assert await _points(store, reporter.userId) == (0, 0)


async def test_missing_picker_profile_aborts_settlement():
    store = InMemoryDocumentStore(namespace="t")
    engine, reporter, picker, monitor = await _setup(store)
    report_id = await _pending(engine, reporter, picker)
    await store.update(REPORTS, report_id, {"pickerId": "ghost-picker"})
    before = (await store.get(REPORTS, report_id)).data

    with pytest.raises(DocumentNotFound):
        await engine.approve_report(monitor, report_id)
    assert (await store.get(REPORTS, report_id)).data == before
    assert await _points(store, reporter.userId) == (0, 0)


async def test_concurrent_settlements_on_shared_profiles_do_not_lose_updates():
    store = YieldingStore(namespace="t")
    engine, reporter, picker, monitor = await _setup(store)
    first = await _pending(engine, reporter, picker)
    second = await _pending(engine, reporter, picker)

    await asyncio.gather(engine.approve_report(monitor, first), engine.approve_report(monitor, second))

    assert await _points(store, reporter.userId) == (20, 0)
    assert await _points(store, picker.userId) == (0, 60)


@pytest.mark.parametrize("approve_first", [True, False])
async def test_approve_racing_reject_reaches_exactly_one_outcome(approve_first):
    store = YieldingStore(namespace="t")
    engine, reporter, picker, monitor = await _setup(store)
    report_id = await _pending(engine, reporter, picker)

    calls = [engine.approve_report(monitor, report_id), engine.reject_report(monitor, report_id)]
    if not approve_first:
        calls.reverse()
    results = await asyncio.gather(*calls, return_exceptions=True)
    if not approve_first:
        results.reverse()
    approved, rejected = results

    outcomes = [r for r in results if not isinstance(r, Exception)]
    assert len(outcomes) == 1
    assert all(isinstance(r, (TransitionDenied, PreconditionFailed)) for r in results if isinstance(r, Exception))

    final = await engine.get_report(report_id)
    if isinstance(approved, Exception):
        assert final.status == ReportStatus.REJECTED
        assert rejected.status == ReportStatus.REJECTED
        assert not final.reporterRewardIssued and not final.pickerRewardIssued
        assert await _points(store, reporter.userId) == (0, 0)
        assert await _points(store, picker.userId) == (0, 0)
    else:
        assert final.status == ReportStatus.COMPLETED
        assert approved.report.status == ReportStatus.COMPLETED
        assert await _points(store, reporter.userId) == (10, 0)
        assert await _points(store, picker.userId) == (0, 30)


async def test_points_never_decrease_across_approvals():
    store = InMemoryDocumentStore(namespace="t")
    engine, reporter, picker, monitor = await _setup(store)
    history = [await _points(store, picker.userId)]

    for _ in range(4):
        report_id = await _pending(engine, reporter, picker)
        await engine.approve_report(monitor, report_id)
        history.append(await _points(store, picker.userId))

    picker_totals = [p for _, p in history]
    assert picker_totals == sorted(picker_totals)
    assert picker_totals[-1] == 4 * 30
