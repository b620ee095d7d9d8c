from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TransactionSource(str, Enum):
    manual = "manual"
    allocation = "allocation"
    monthly_saving = "monthly_saving"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Project(Base, TimestampMixin):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    ledger_tag: Mapped[Optional[str]] = mapped_column(String(120))
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    planned_budget_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    saving_goals: Mapped[list["ProjectSavingGoal"]] = relationship(
        "ProjectSavingGoal",
        back_populates="project",
        cascade="all, delete-orphan",
    )
    allocations: Mapped[list["ProjectAllocation"]] = relationship(
        "ProjectAllocation",
        back_populates="project",
        cascade="all, delete-orphan",
    )
    manual_transactions: Mapped[list["ManualTransaction"]] = relationship(
        "ManualTransaction",
        back_populates="project",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "planned_budget_cents >= 0", name="ck_project_budget_positive"
        ),
    )

    @property
    def ledger_key(self) -> str:
        """Project tag used on ledger splits; the project name unless mapped."""
        return self.ledger_tag or self.name


class ProjectSavingGoal(Base):
    __tablename__ = "project_saving_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    reason: Mapped[Optional[str]] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    project: Mapped["Project"] = relationship("Project", back_populates="saving_goals")

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_saving_goal_amount_positive"),
        Index("ix_saving_goals_project_period", "project_id", "start_date", "end_date"),
    )


class ProjectAllocation(Base, TimestampMixin):
    __tablename__ = "project_allocations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    project: Mapped["Project"] = relationship("Project", back_populates="allocations")

    __table_args__ = (
        UniqueConstraint("project_id", "month", name="uq_allocation_project_month"),
        Index("ix_allocations_month", "month"),
    )


class ManualTransaction(Base, TimestampMixin):
    __tablename__ = "manual_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE")
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(120), nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text)
    source: Mapped[TransactionSource] = mapped_column(
        SAEnum(TransactionSource), nullable=False, default=TransactionSource.manual
    )
    # Deterministic key of rows generated from an allocation or a monthly entry.
    source_key: Mapped[Optional[str]] = mapped_column(String(64), unique=True)

    project: Mapped[Optional["Project"]] = relationship(
        "Project", back_populates="manual_transactions"
    )

    __table_args__ = (
        Index("ix_manual_transactions_date", "date"),
        Index("ix_manual_transactions_project_date", "project_id", "date"),
    )


class MonthlyManualSaving(Base, TimestampMixin):
    __tablename__ = "monthly_manual_savings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    month: Mapped[str] = mapped_column(String(7), nullable=False, unique=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AccountPreference(Base, TimestampMixin):
    __tablename__ = "account_preferences"

    account_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_name: Mapped[str] = mapped_column(String(200), nullable=False)
    include_savings: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    include_checking: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
