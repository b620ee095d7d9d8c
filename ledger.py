"""Read-only mapping of the imported ledger file.

The ledger is produced by the desktop accounting application and copied next
to the local store; this module never creates or alters its tables outside of
tests.
"""

from typing import Optional

from sqlalchemy import Float, ForeignKey, Integer, String, func, or_
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

PLANNED_STATUS = "ICTransactionStatus.PlannedStatus"


class LedgerBase(DeclarativeBase):
    pass


class LedgerAccount(LedgerBase):
    __tablename__ = "ICAccount"

    id: Mapped[str] = mapped_column("ID", String, primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String)
    type: Mapped[Optional[str]] = mapped_column(String)
    hidden: Mapped[Optional[int]] = mapped_column(Integer, default=0)


class LedgerCategory(LedgerBase):
    __tablename__ = "ICCategory"

    id: Mapped[str] = mapped_column("ID", String, primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String)
    parent_id: Mapped[Optional[str]] = mapped_column("parent", String)


class LedgerTransaction(LedgerBase):
    __tablename__ = "ICTransaction"

    id: Mapped[str] = mapped_column("ID", String, primary_key=True)
    date: Mapped[Optional[str]] = mapped_column(String)
    name: Mapped[Optional[str]] = mapped_column(String)
    account_id: Mapped[Optional[str]] = mapped_column(
        "account", ForeignKey("ICAccount.ID")
    )
    status: Mapped[Optional[str]] = mapped_column(String)

    splits: Mapped[list["LedgerSplit"]] = relationship(
        "LedgerSplit", back_populates="transaction"
    )


class LedgerSplit(LedgerBase):
    __tablename__ = "ICTransactionSplit"

    id: Mapped[str] = mapped_column("ID", String, primary_key=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(
        "transaction", ForeignKey("ICTransaction.ID")
    )
    amount: Mapped[Optional[float]] = mapped_column(Float)
    category_id: Mapped[Optional[str]] = mapped_column(
        "category", ForeignKey("ICCategory.ID")
    )
    project: Mapped[Optional[str]] = mapped_column(String)
    comment: Mapped[Optional[str]] = mapped_column(String)

    transaction: Mapped[Optional["LedgerTransaction"]] = relationship(
        "LedgerTransaction", back_populates="splits"
    )


def month_of(column):
    return func.strftime("%Y-%m", column)


def day_of(column):
    return func.date(column)


def not_planned():
    return or_(
        LedgerTransaction.status.is_(None),
        LedgerTransaction.status != PLANNED_STATUS,
    )


def map_account_type(raw_type: Optional[str]) -> str:
    if not raw_type:
        return "autre"
    lowered = raw_type.lower()
    if "saving" in lowered:
        return "Épargne"
    if "checking" in lowered or "cheque" in lowered or "current" in lowered:
        return "Chèques"
    if "invest" in lowered:
        return "Investissement"
    return "autre"
