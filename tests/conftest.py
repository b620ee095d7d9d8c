from itertools import count
from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import DEFAULT_EXCLUDED_ROOTS, Settings
from database import Base
from ledger import (
    LedgerAccount,
    LedgerBase,
    LedgerCategory,
    LedgerSplit,
    LedgerTransaction,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_ledger_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    LedgerBase.metadata.create_all(engine)
    return Session(bind=engine, autoflush=False, expire_on_commit=False)


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite+pysqlite:///:memory:",
        ledger_path=Path("/nonexistent/Comptes.cdb"),
        timezone="Europe/Paris",
        savings_category_ids=(),
        internal_transfer_category_ids=(),
        excluded_roots=DEFAULT_EXCLUDED_ROOTS,
        log_level="INFO",
    )
    values.update(overrides)
    return Settings(**values)


class LedgerBuilder:
    """Seeds the in-memory ledger with the tables the desktop app writes."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._ids = count(1)

    def _next(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    def account(self, name: str, type: str = "ICAccountType.Checking", hidden: int = 0) -> str:
        account_id = self._next("A")
        self.session.add(LedgerAccount(id=account_id, name=name, type=type, hidden=hidden))
        self.session.commit()
        return account_id

    def category(self, name: str, parent: Optional[str] = None) -> str:
        category_id = self._next("C")
        self.session.add(LedgerCategory(id=category_id, name=name, parent_id=parent))
        self.session.commit()
        return category_id

    def split(
        self,
        account: str,
        day: str,
        amount: float,
        category: Optional[str] = None,
        project: Optional[str] = None,
        comment: Optional[str] = None,
        status: Optional[str] = "ICTransactionStatus.ClearedStatus",
        name: str = "Transaction",
    ) -> str:
        txn_id = self._next("T")
        split_id = self._next("S")
        self.session.add(
            LedgerTransaction(
                id=txn_id, date=f"{day} 12:00:00", name=name, account_id=account, status=status
            )
        )
        self.session.add(
            LedgerSplit(
                id=split_id,
                transaction_id=txn_id,
                amount=amount,
                category_id=category,
                project=project,
                comment=comment,
            )
        )
        self.session.commit()
        return split_id


@pytest.fixture
def session():
    db = make_session()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def ledger():
    db = make_ledger_session()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def builder(ledger) -> LedgerBuilder:
    return LedgerBuilder(ledger)


@pytest.fixture
def settings() -> Settings:
    return make_settings()
