"""Persistence and SQLModel definitions for the Venus web service."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Iterator, List, Optional

from sqlalchemy import DateTime, inspect, text, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Field, Session, SQLModel, col, create_engine, delete, desc, select

from ..exceptions import DuplicateAccountError, StoreUnavailableError
from ..models import Account, Goal, as_utc, utcnow
from ..money import to_decimal
from ..store import Backend

# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------


class GoalRecord(SQLModel, table=True):
    __tablename__ = "goal"

    pk: Optional[int] = Field(default=None, primary_key=True)
    goal_id: str = Field(index=True, unique=True)
    owner_id: str = Field(index=True)
    label: str
    target_cents: int
    current_cents: int = 0
    lock_until: date
    status: str = "locked"  # locked|withdrawn
    emergency_allowed: bool = True
    withdraw_count: int = 0
    penalty_cents: int = 0
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class AccountRecord(SQLModel, table=True):
    __tablename__ = "account"

    pk: Optional[int] = Field(default=None, primary_key=True)
    account_id: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


def to_cents(amount: Decimal) -> int:
    return int(to_decimal(amount) * 100)


def from_cents(cents: int) -> Decimal:
    return to_decimal(Decimal(cents) / 100)


def goal_from_row(row: GoalRecord) -> Goal:
    return Goal(
        id=row.goal_id,
        owner_id=row.owner_id,
        label=row.label,
        target_amount=from_cents(row.target_cents),
        current_amount=from_cents(row.current_cents),
        lock_until=row.lock_until,
        status=row.status,
        emergency_allowed=row.emergency_allowed,
        withdraw_count=row.withdraw_count,
        penalty_amount=from_cents(row.penalty_cents),
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def goal_values(goal: Goal) -> dict:
    """Column values for ``goal`` excluding the surrogate key."""

    return {
        "goal_id": goal.id,
        "owner_id": goal.owner_id,
        "label": goal.label,
        "target_cents": to_cents(goal.target_amount),
        "current_cents": to_cents(goal.current_amount),
        "lock_until": goal.lock_until,
        "status": goal.status.value,
        "emergency_allowed": goal.emergency_allowed,
        "withdraw_count": goal.withdraw_count,
        "penalty_cents": to_cents(goal.penalty_amount),
        "version": goal.version,
        "created_at": as_utc(goal.created_at),
        "updated_at": as_utc(goal.updated_at),
    }


def account_from_row(row: AccountRecord) -> Account:
    return Account(
        id=row.account_id,
        email=row.email,
        password_hash=row.password_hash,
        created_at=row.created_at,
    )


def build_engine(sqlite_file: str) -> Engine:
    return create_engine(
        f"sqlite:///{sqlite_file}",
        echo=False,
        connect_args={"check_same_thread": False},
    )


def _column_exists(connection: Connection, table: str, column: str) -> bool:
    return any(info["name"] == column for info in inspect(connection).get_columns(table))


def create_db_and_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


def run_migrations(engine: Engine) -> None:
    """Bring goal tables created before penalties and versions up to date."""

    with engine.begin() as connection:
        if not _column_exists(connection, "goal", "penalty_cents"):
            connection.execute(text("ALTER TABLE goal ADD COLUMN penalty_cents INTEGER NOT NULL DEFAULT 0"))
        if not _column_exists(connection, "goal", "version"):
            connection.execute(text("ALTER TABLE goal ADD COLUMN version INTEGER NOT NULL DEFAULT 1"))


class SqlBackend(Backend):
    """SQLite storage through SQLModel; the durable document store variant."""

    name = "sqlite"

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        with self._guard():
            create_db_and_tables(engine)
            run_migrations(engine)

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except OperationalError as exc:
            raise StoreUnavailableError("savings store is unavailable, please retry.") from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self._guard():
            with Session(self.engine, expire_on_commit=False) as session:
                yield session

    # goals -----------------------------------------------------------------
    def add_goal(self, goal: Goal) -> None:
        with self._session() as session:
            session.add(GoalRecord(**goal_values(goal)))
            session.commit()

    def get_goal(self, owner_id: str, goal_id: str) -> Optional[Goal]:
        with self._session() as session:
            row = session.exec(
                select(GoalRecord).where(GoalRecord.goal_id == goal_id, GoalRecord.owner_id == owner_id)
            ).first()
            return goal_from_row(row) if row else None

    def list_goals(self, owner_id: str) -> List[Goal]:
        with self._session() as session:
            rows = session.exec(
                select(GoalRecord)
                .where(GoalRecord.owner_id == owner_id)
                .order_by(desc(GoalRecord.created_at), desc(GoalRecord.pk))
            ).all()
            return [goal_from_row(row) for row in rows]

    def replace_goal(self, goal: Goal, expected_version: int) -> bool:
        values = goal_values(goal)
        values.pop("goal_id")
        values.pop("owner_id")
        values.pop("created_at")
        with self._session() as session:
            result = session.exec(  # type: ignore[call-overload]
                update(GoalRecord)
                .where(
                    col(GoalRecord.goal_id) == goal.id,
                    col(GoalRecord.owner_id) == goal.owner_id,
                    col(GoalRecord.version) == expected_version,
                )
                .values(**values)
            )
            session.commit()
            return result.rowcount == 1

    def remove_goal(self, owner_id: str, goal_id: str) -> bool:
        with self._session() as session:
            result = session.exec(  # type: ignore[call-overload]
                delete(GoalRecord).where(
                    col(GoalRecord.goal_id) == goal_id,
                    col(GoalRecord.owner_id) == owner_id,
                )
            )
            session.commit()
            return result.rowcount == 1

    def remove_goals(self, owner_id: str) -> int:
        with self._session() as session:
            result = session.exec(  # type: ignore[call-overload]
                delete(GoalRecord).where(col(GoalRecord.owner_id) == owner_id)
            )
            session.commit()
            return result.rowcount

    # accounts --------------------------------------------------------------
    def add_account(self, account: Account) -> None:
        with self._session() as session:
            session.add(
                AccountRecord(
                    account_id=account.id,
                    email=account.email,
                    password_hash=account.password_hash,
                    created_at=as_utc(account.created_at),
                )
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateAccountError("this email already has an account.") from exc

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._session() as session:
            row = session.exec(select(AccountRecord).where(AccountRecord.account_id == account_id)).first()
            return account_from_row(row) if row else None

    def find_account(self, email: str) -> Optional[Account]:
        with self._session() as session:
            row = session.exec(select(AccountRecord).where(AccountRecord.email == email)).first()
            return account_from_row(row) if row else None

    def ping(self) -> bool:
        with self._session() as session:
            session.exec(select(GoalRecord.pk).limit(1)).all()
        return True


__all__ = [
    "AccountRecord",
    "GoalRecord",
    "SqlBackend",
    "build_engine",
    "create_db_and_tables",
    "from_cents",
    "goal_from_row",
    "run_migrations",
    "to_cents",
]
