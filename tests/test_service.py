import threading
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from venus.exceptions import (
    AlreadyWithdrawnError,
    EmergencyNotAllowedError,
    NotFoundError,
    ValidationError,
    WithdrawLimitReachedError,
)
from venus.models import GoalStatus, WithdrawalKind
from venus.money import MAX_AMOUNT, to_decimal
from venus.rules import GlobalCapPolicy
from venus.service import GoalStore
from venus.store import MemoryBackend
from venus.webapp.persistence import SqlBackend, build_engine

NOW = datetime(2026, 3, 1, 9, 30)
FUTURE = (NOW + timedelta(days=30)).date().isoformat()
PAST = (NOW - timedelta(days=1)).date().isoformat()


class Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(microseconds=1)
        return self.now


@pytest.fixture()
def store() -> GoalStore:
    return GoalStore(MemoryBackend(), clock=Clock(NOW))


def test_trip_scenario(store: GoalStore) -> None:
    goal = store.create("owner-a", "Trip", 1000, FUTURE, True, initial_deposit=100)
    assert goal.status is GoalStatus.LOCKED
    assert goal.current_amount == Decimal("100.00")
    assert goal.withdraw_count == 0

    withdrawn = store.withdraw("owner-a", goal.id)
    assert withdrawn.status is GoalStatus.WITHDRAWN
    assert withdrawn.withdraw_count == 1
    assert withdrawn.penalty_amount == Decimal("0.00")

    with pytest.raises(AlreadyWithdrawnError):
        store.withdraw("owner-a", goal.id)
    assert store.get("owner-a", goal.id) == withdrawn


@pytest.mark.parametrize("target", [0, -5, "abc", None, "", "1e30", "1e20", "1000000000000.01"])
def test_create_rejects_bad_target_and_persists_nothing(store: GoalStore, target) -> None:
    with pytest.raises(ValidationError):
        store.create("owner-a", "Rent buffer", target, FUTURE)
    assert store.list("owner-a") == []


@pytest.mark.parametrize(
    "label, lock_until, deposit",
    [
        ("   ", FUTURE, 0),
        ("Camera", "", 0),
        ("Camera", "next tuesday", 0),
        ("Camera", "2026-05-01garbage", 0),
        ("Camera", "2026-05-01T09:00:00junk", 0),
        ("Camera", FUTURE, -1),
        ("Camera", FUTURE, 500.01),
    ],
)
def test_create_validation(store: GoalStore, label, lock_until, deposit) -> None:
    with pytest.raises(ValidationError):
        store.create("owner-a", label, 500, lock_until, initial_deposit=deposit)
    assert store.list("owner-a") == []


def test_list_is_newest_first_and_scoped(store: GoalStore) -> None:
    first = store.create("owner-a", "Flight", 300, FUTURE)
    second = store.create("owner-a", "Camera", 800, FUTURE)
    store.create("owner-b", "Rent", 1200, FUTURE)

    assert [goal.id for goal in store.list("owner-a")] == [second.id, first.id]
    assert store.list("nobody") == []


def test_foreign_owner_cannot_touch_goal(store: GoalStore) -> None:
    goal = store.create("owner-b", "Rent", 1200, FUTURE)

    with pytest.raises(NotFoundError):
        store.get("owner-a", goal.id)
    with pytest.raises(NotFoundError):
        store.update("owner-a", goal.id, label="Mine now")
    with pytest.raises(NotFoundError):
        store.withdraw("owner-a", goal.id)
    with pytest.raises(NotFoundError):
        store.delete("owner-a", goal.id)

    untouched = store.get("owner-b", goal.id)
    assert untouched.label == "Rent"
    assert untouched.status is GoalStatus.LOCKED
    assert untouched.version == 1


def test_early_withdraw_without_emergency_stays_locked(store: GoalStore) -> None:
    goal = store.create("owner-a", "Flight", 300, FUTURE, emergency_allowed=False)

    with pytest.raises(EmergencyNotAllowedError):
        store.withdraw("owner-a", goal.id)
    assert store.get("owner-a", goal.id).status is GoalStatus.LOCKED
    assert store.logger.events("withdrawal_rejected")[-1]["reason"] == "EmergencyNotAllowedError"


def test_withdraw_after_lock_date_has_no_penalty(store: GoalStore) -> None:
    goal = store.create("owner-a", "Flight", 300, PAST, emergency_allowed=False, initial_deposit=300)

    decision = store.withdraw_with_decision("owner-a", goal.id)

    assert decision.kind is WithdrawalKind.UNLOCKED
    assert decision.goal.status is GoalStatus.WITHDRAWN
    assert decision.goal.withdraw_count == 0
    assert decision.goal.penalty_amount == Decimal("0.00")


def test_second_break_after_relock_is_penalised(store: GoalStore) -> None:
    goal = store.create("owner-a", "Laptop", 1000, FUTURE, initial_deposit=200)
    store.withdraw("owner-a", goal.id)

    relocked = store.relock("owner-a", goal.id, FUTURE)
    assert relocked.status is GoalStatus.LOCKED
    assert relocked.withdraw_count == 1

    second = store.withdraw_with_decision("owner-a", goal.id)
    assert second.penalty == Decimal("20.00")
    assert second.goal.withdraw_count == 2
    assert second.goal.penalty_amount == Decimal("20.00")


def test_relock_rules(store: GoalStore) -> None:
    goal = store.create("owner-a", "Laptop", 1000, FUTURE)

    with pytest.raises(ValidationError):
        store.relock("owner-a", goal.id, FUTURE)
    store.withdraw("owner-a", goal.id)
    with pytest.raises(ValidationError):
        store.relock("owner-a", goal.id, NOW.date().isoformat())


def test_update_applies_only_given_fields(store: GoalStore) -> None:
    goal = store.create("owner-a", "Camera", 800, FUTURE, initial_deposit=100)

    updated = store.update("owner-a", goal.id, label="Better camera", target_amount="950.5")

    assert updated.label == "Better camera"
    assert updated.target_amount == Decimal("950.50")
    assert updated.lock_until == goal.lock_until
    assert updated.emergency_allowed is True
    assert updated.version == goal.version + 1
    assert updated.updated_at > goal.updated_at


def test_update_revalidates(store: GoalStore) -> None:
    goal = store.create("owner-a", "Camera", 800, FUTURE, initial_deposit=100)

    with pytest.raises(ValidationError):
        store.update("owner-a", goal.id, target_amount=50)
    with pytest.raises(ValidationError):
        store.update("owner-a", goal.id, label="")
    with pytest.raises(ValidationError):
        store.update("owner-a", goal.id, status="withdrawn")
    with pytest.raises(ValidationError):
        store.update("owner-a", goal.id)
    assert store.get("owner-a", goal.id).version == 1


def test_delete_removes_locked_goal(store: GoalStore) -> None:
    goal = store.create("owner-a", "Camera", 800, FUTURE)

    store.delete("owner-a", goal.id)

    assert store.list("owner-a") == []
    with pytest.raises(NotFoundError):
        store.delete("owner-a", goal.id)


def test_contribute_caps_at_target(store: GoalStore) -> None:
    goal = store.create("owner-a", "Camera", 100, FUTURE, initial_deposit=40)

    updated = store.contribute("owner-a", goal.id, "35.5")
    assert updated.current_amount == Decimal("75.50")

    with pytest.raises(ValidationError):
        store.contribute("owner-a", goal.id, 30)
    with pytest.raises(ValidationError):
        store.contribute("owner-a", goal.id, 0)

    store.withdraw("owner-a", goal.id)
    with pytest.raises(AlreadyWithdrawnError):
        store.contribute("owner-a", goal.id, 1)


def test_summary_and_reset(store: GoalStore) -> None:
    kept = store.create("owner-a", "Camera", 500, FUTURE, initial_deposit=120)
    broken = store.create("owner-a", "Flight", 400, FUTURE, initial_deposit=80)
    store.create("owner-b", "Rent", 900, FUTURE, initial_deposit=900)
    store.withdraw("owner-a", broken.id)

    summary = store.summary("owner-a")
    assert summary.total_goals == 2
    assert summary.locked_count == 1
    assert summary.withdrawn_count == 1
    assert summary.total_locked == Decimal("120.00")
    assert summary.total_withdrawn == Decimal("80.00")
    assert summary.emergency_uses == 1
    assert kept.id != broken.id

    assert store.reset("owner-a") == 2
    assert store.list("owner-a") == []
    assert len(store.list("owner-b")) == 1


def test_global_cap_policy_counts_all_goals() -> None:
    store = GoalStore(MemoryBackend(), policy=GlobalCapPolicy(limit=3), clock=Clock(NOW))
    goals = [store.create("owner-a", f"Goal {index}", 100, FUTURE) for index in range(4)]

    for goal in goals[:3]:
        assert store.withdraw("owner-a", goal.id).penalty_amount == Decimal("0.00")

    with pytest.raises(WithdrawLimitReachedError):
        store.withdraw("owner-a", goals[3].id)
    assert store.get("owner-a", goals[3].id).status is GoalStatus.LOCKED

    other = store.create("owner-b", "Fresh start", 100, FUTURE)
    assert store.withdraw("owner-b", other.id).status is GoalStatus.WITHDRAWN


@pytest.mark.parametrize("backend_name", ["memory", "sqlite"])
def test_concurrent_withdrawals_have_one_winner(backend_name: str, tmp_path) -> None:
    if backend_name == "sqlite":
        backend = SqlBackend(build_engine(str(tmp_path / "goals.db")))
    else:
        backend = MemoryBackend()
    store = GoalStore(backend, clock=Clock(NOW))
    goal = store.create("owner-a", "Trip", 1000, FUTURE, initial_deposit=100)
    results: list = []
    barrier = threading.Barrier(8)

    def attempt() -> None:
        barrier.wait()
        try:
            results.append(store.withdraw("owner-a", goal.id))
        except AlreadyWithdrawnError as exc:
            results.append(exc)

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    winners = [result for result in results if not isinstance(result, Exception)]
    assert len(winners) == 1
    assert len(results) == 8
    final = store.get("owner-a", goal.id)
    assert final.withdraw_count == 1
    assert final.version == 2


def test_lock_date_accepts_iso_datetime_and_large_amounts_up_to_the_limit(store: GoalStore) -> None:
    goal = store.create("owner-a", "House", MAX_AMOUNT, "2026-05-01T09:00:00")

    assert goal.lock_until == date(2026, 5, 1)
    assert goal.target_amount == MAX_AMOUNT


def test_oversized_amounts_are_value_errors() -> None:
    with pytest.raises(ValueError):
        to_decimal("1e30")
