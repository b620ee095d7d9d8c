from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from rapidfuzz.distance import Levenshtein

from config import Settings, get_settings
from ledger import (
    LedgerAccount,
    LedgerCategory,
    LedgerSplit,
    LedgerTransaction,
    day_of,
    map_account_type,
    month_of,
    not_planned,
)
from models import (
    AccountPreference,
    ManualTransaction,
    MonthlyManualSaving,
    Project,
    ProjectAllocation,
    ProjectSavingGoal,
    TransactionSource,
    TransactionType,
)
from money import (
    TOLERANCE_CENTS,
    ceil_to_unit,
    cents_to_euros,
    ledger_cents,
    parse_amount,
)
from periods import (
    MonthSpan,
    month_end,
    month_key,
    month_label,
    month_start,
    months_between_inclusive,
    parse_month,
    today_local,
)
from schemas import (
    AccountPreferenceIn,
    AllocationIn,
    ManualTransactionIn,
    ProjectIn,
    ProjectUpdate,
)
from taxonomy import CategoryNode, CategoryTaxonomy, normalize_name

logger = logging.getLogger(__name__)

SAVINGS_CATEGORY_NAMES = ("Virements d'épargne", "Epargne", "Épargne")
SAVINGS_CATEGORY_FRAGMENTS = ("virements d'epargne", "epargne")
INTERNAL_TRANSFER_KEYWORD = "virements internes"
PROVISION_KEYWORD = "provision"

MIRROR_PREFIX = "VIR Epargne"
MIRROR_CATEGORY = "Virements d'épargne"
FREE_SAVINGS_LABEL = "Épargne libre"
MANUAL_SAVINGS_LABEL = "Épargne manuelle"

PROJECT_TRANSACTIONS_LIMIT = 1000
AUTO_MAP_MIN_SCORE = 80
GOAL_STATUS_RATIO = 0.75
PERFORMANCE_BAND_PERCENT = 5


class NotFoundError(ValueError):
    pass


class InsufficientProjectData(ValueError):
    pass


# ---------------------------------------------------------------------------
# Per-request context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountClassification:
    checking_ids: frozenset[str] = frozenset()
    savings_ids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class SavingsContext:
    """Filter sets resolved once per request and handed to every computation."""

    taxonomy: CategoryTaxonomy
    savings_category_ids: frozenset[str] = frozenset()
    internal_transfer_ids: frozenset[str] = frozenset()
    provision_ids: frozenset[str] = frozenset()
    accounts: AccountClassification = field(default_factory=AccountClassification)

    @classmethod
    def empty(cls) -> "SavingsContext":
        return cls(taxonomy=CategoryTaxonomy.empty())

    @property
    def spend_excluded_ids(self) -> frozenset[str]:
        return self.provision_ids | self.savings_category_ids | self.internal_transfer_ids


def load_taxonomy(
    ledger: Optional[Session], excluded_roots: Iterable[str]
) -> CategoryTaxonomy:
    if ledger is None:
        return CategoryTaxonomy.empty()
    rows = ledger.execute(
        select(LedgerCategory.id, LedgerCategory.name, LedgerCategory.parent_id)
    ).all()
    nodes = [
        CategoryNode(id=str(cid), name=name or "", parent_id=str(parent) if parent else None)
        for cid, name, parent in rows
    ]
    return CategoryTaxonomy(nodes, excluded_roots)


def resolve_savings_category_ids(
    taxonomy: CategoryTaxonomy, configured: Iterable[str] = ()
) -> frozenset[str]:
    """Configured ids first, then exact names, then a name fragment match."""
    explicit = frozenset(str(item) for item in configured if item)
    if explicit:
        return explicit
    exact = frozenset(
        node.id for name in SAVINGS_CATEGORY_NAMES for node in taxonomy.find_by_name(name)
    )
    if exact:
        return exact
    return frozenset(
        node.id
        for fragment in SAVINGS_CATEGORY_FRAGMENTS
        for node in taxonomy.find_containing(fragment)
    )


def resolve_internal_transfer_ids(
    taxonomy: CategoryTaxonomy, configured: Iterable[str] = ()
) -> frozenset[str]:
    explicit = frozenset(str(item) for item in configured if item)
    if explicit:
        return explicit
    return taxonomy.ids_where_chain_mentions(INTERNAL_TRANSFER_KEYWORD)


def build_context(
    session: Session,
    ledger: Optional[Session],
    settings: Optional[Settings] = None,
) -> SavingsContext:
    settings = settings or get_settings()
    if ledger is None:
        return SavingsContext.empty()
    taxonomy = load_taxonomy(ledger, settings.excluded_roots)
    context = SavingsContext(
        taxonomy=taxonomy,
        savings_category_ids=resolve_savings_category_ids(
            taxonomy, settings.savings_category_ids
        ),
        internal_transfer_ids=resolve_internal_transfer_ids(
            taxonomy, settings.internal_transfer_category_ids
        ),
        provision_ids=taxonomy.ids_where_chain_mentions(PROVISION_KEYWORD),
        accounts=AccountService(session, ledger).classify(),
    )
    logger.debug(
        f"savings_context: categories={len(taxonomy)} "
        f"savings_ids={len(context.savings_category_ids)} "
        f"checking={len(context.accounts.checking_ids)} "
        f"savings_accounts={len(context.accounts.savings_ids)}"
    )
    return context


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def _is_visible(account: LedgerAccount) -> bool:
    return not account.hidden


class AccountService:
    def __init__(self, session: Session, ledger: Optional[Session]) -> None:
        self.session = session
        self.ledger = ledger

    def _ledger_accounts(self) -> list[LedgerAccount]:
        if self.ledger is None:
            return []
        return list(
            self.ledger.scalars(select(LedgerAccount).order_by(LedgerAccount.name)).all()
        )

    def classify(self) -> AccountClassification:
        accounts = self._ledger_accounts()
        if not accounts:
            return AccountClassification()
        known = {account.id for account in accounts}
        preferences = self.list_preferences()
        if not preferences:
            # Nothing configured yet: only savings-typed accounts count as savings.
            return AccountClassification(
                savings_ids=frozenset(
                    account.id
                    for account in accounts
                    if "savings" in (account.type or "").lower()
                )
            )
        return AccountClassification(
            checking_ids=frozenset(
                p.account_id for p in preferences if p.include_checking and p.account_id in known
            ),
            savings_ids=frozenset(
                p.account_id for p in preferences if p.include_savings and p.account_id in known
            ),
        )

    def balances(self) -> dict[str, int]:
        if self.ledger is None:
            return {}
        rows = self.ledger.execute(
            select(LedgerTransaction.account_id, func.sum(LedgerSplit.amount))
            .select_from(LedgerSplit)
            .join(LedgerTransaction, LedgerSplit.transaction_id == LedgerTransaction.id)
            .where(not_planned())
            .group_by(LedgerTransaction.account_id)
        ).all()
        return {account_id: ledger_cents(total) for account_id, total in rows}

    def list_accounts(self, account_filter: Optional[str] = None) -> list[dict]:
        if account_filter not in (None, "all", "checking", "savings"):
            raise ValueError("filter must be one of: all, checking, savings")
        accounts = [a for a in self._ledger_accounts() if _is_visible(a)]
        if not accounts:
            return []
        classification = self.classify()
        balances = self.balances()
        if account_filter == "checking":
            accounts = [a for a in accounts if a.id in classification.checking_ids]
        elif account_filter == "savings":
            accounts = [a for a in accounts if a.id in classification.savings_ids]
        return [
            {
                "id": account.id,
                "name": account.name or "",
                "type": account.type,
                "displayType": map_account_type(account.type),
                "balance": cents_to_euros(balances.get(account.id, 0)),
                "includeChecking": account.id in classification.checking_ids,
                "includeSavings": account.id in classification.savings_ids,
            }
            for account in accounts
        ]

    def list_preferences(self) -> list[AccountPreference]:
        return list(
            self.session.scalars(
                select(AccountPreference).order_by(AccountPreference.account_name)
            ).all()
        )

    def _apply(self, data: AccountPreferenceIn) -> AccountPreference:
        pref = self.session.get(AccountPreference, data.account_id)
        if pref is None:
            pref = AccountPreference(account_id=data.account_id)
            self.session.add(pref)
        pref.account_name = data.account_name
        pref.include_savings = data.include_savings
        pref.include_checking = data.include_checking
        return pref

    def save_preference(self, data: AccountPreferenceIn) -> AccountPreference:
        try:
            pref = self._apply(data)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(pref)
        return pref

    def save_all_preferences(
        self, items: list[AccountPreferenceIn]
    ) -> list[AccountPreference]:
        ids = [item.account_id for item in items]
        if len(ids) != len(set(ids)):
            raise ValueError("Duplicate account in preferences")
        try:
            for item in items:
                self._apply(item)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(f"account_preferences_saved: rows={len(items)}")
        return self.list_preferences()

    def refresh_preferences(self) -> list[AccountPreference]:
        accounts = [a for a in self._ledger_accounts() if _is_visible(a)]
        created = 0
        try:
            for account in accounts:
                pref = self.session.get(AccountPreference, account.id)
                if pref is not None:
                    pref.account_name = account.name or pref.account_name
                    continue
                display = map_account_type(account.type)
                self.session.add(
                    AccountPreference(
                        account_id=account.id,
                        account_name=account.name or account.id,
                        include_checking=display == "Chèques",
                        include_savings=display == "Épargne",
                    )
                )
                created += 1
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"account_preferences_refreshed: accounts={len(accounts)} created={created}"
        )
        return self.list_preferences()


# ---------------------------------------------------------------------------
# Ledger aggregation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MonthAggregate:
    month: str
    total_savings_cents: int
    total_spent_cents: int
    per_project_cents: dict[int, int]


def _project_keys(projects: Iterable[Project]) -> dict[str, list[int]]:
    keys: dict[str, list[int]] = {}
    for project in projects:
        keys.setdefault(project.ledger_key, []).append(project.id)
    return keys


class LedgerAggregationService:
    """Sums over the imported ledger. Every method returns zeros without a ledger."""

    def __init__(self, ledger: Optional[Session], context: SavingsContext) -> None:
        self.ledger = ledger
        self.context = context

    def _splits(self, *columns):
        return (
            select(*columns)
            .select_from(LedgerSplit)
            .join(LedgerTransaction, LedgerSplit.transaction_id == LedgerTransaction.id)
            .where(not_planned())
        )

    def _without(self, stmt, category_ids: frozenset[str]):
        if not category_ids:
            return stmt
        return stmt.where(
            or_(
                LedgerSplit.category_id.is_(None),
                LedgerSplit.category_id.not_in(category_ids),
            )
        )

    def total_savings(self, month: str) -> int:
        if self.ledger is None:
            return 0
        rows = self.ledger.execute(
            self._splits(
                LedgerSplit.category_id, LedgerSplit.comment, func.sum(LedgerSplit.amount)
            )
            .where(month_of(LedgerTransaction.date) == month)
            .group_by(LedgerSplit.category_id, LedgerSplit.comment)
        ).all()
        taxonomy = self.context.taxonomy
        return sum(
            ledger_cents(total)
            for category_id, comment, total in rows
            if not taxonomy.is_excluded(category_id, comment)
        )

    def _spent_statement(self):
        checking = self.context.accounts.checking_ids
        stmt = self._splits(func.sum(LedgerSplit.amount)).where(
            LedgerSplit.amount < 0,
            LedgerTransaction.account_id.in_(checking),
        )
        return self._without(stmt, self.context.spend_excluded_ids)

    def total_spent(self, month: str) -> int:
        if self.ledger is None or not self.context.accounts.checking_ids:
            return 0
        total = self.ledger.execute(
            self._spent_statement().where(
                month_of(LedgerTransaction.date) == month,
                LedgerSplit.project.is_not(None),
                func.trim(LedgerSplit.project) != "",
            )
        ).scalar_one()
        return abs(ledger_cents(total))

    def project_spent(self, project: Project, month: Optional[str] = None) -> int:
        if self.ledger is None or not self.context.accounts.checking_ids:
            return 0
        stmt = self._spent_statement().where(LedgerSplit.project == project.ledger_key)
        if month is not None:
            stmt = stmt.where(month_of(LedgerTransaction.date) == month)
        return abs(ledger_cents(self.ledger.execute(stmt).scalar_one()))

    def project_savings(
        self,
        tags: Iterable[str],
        *,
        month: Optional[str] = None,
        up_to: Optional[str] = None,
    ) -> dict[tuple[str, str], int]:
        """Positive savings-transfer splits keyed by (project tag, month)."""
        tags = [tag for tag in tags if tag]
        savings_ids = self.context.savings_category_ids
        if self.ledger is None or not tags or not savings_ids:
            return {}
        split_month = month_of(LedgerTransaction.date)
        stmt = (
            self._splits(LedgerSplit.project, split_month, func.sum(LedgerSplit.amount))
            .where(
                LedgerSplit.amount > 0,
                LedgerSplit.category_id.in_(savings_ids),
                LedgerSplit.project.in_(tags),
            )
            .group_by(LedgerSplit.project, split_month)
        )
        if month is not None:
            stmt = stmt.where(split_month == month)
        if up_to is not None:
            stmt = stmt.where(split_month <= up_to)
        return {
            (tag, key): ledger_cents(total)
            for tag, key, total in self.ledger.execute(stmt).all()
            if key
        }

    def per_project_savings(self, month: str, projects: Iterable[Project]) -> dict[int, int]:
        projects = list(projects)
        result = {project.id: 0 for project in projects}
        keys = _project_keys(projects)
        for (tag, _), cents in self.project_savings(keys, month=month).items():
            for project_id in keys.get(tag, ()):
                result[project_id] += cents
        return result

    def savings_balance(self, up_to_month: str) -> Optional[int]:
        """Running balance of the savings accounts at the month's last day."""
        savings_accounts = self.context.accounts.savings_ids
        if self.ledger is None or not savings_accounts:
            return None
        total = self.ledger.execute(
            self._splits(func.sum(LedgerSplit.amount)).where(
                LedgerTransaction.account_id.in_(savings_accounts),
                day_of(LedgerTransaction.date) <= month_end(up_to_month).isoformat(),
            )
        ).scalar_one()
        return ledger_cents(total)

    def aggregate(self, month: str, projects: Iterable[Project]) -> MonthAggregate:
        parse_month(month)
        return MonthAggregate(
            month=month,
            total_savings_cents=self.total_savings(month),
            total_spent_cents=self.total_spent(month),
            per_project_cents=self.per_project_savings(month, projects),
        )

    def project_transactions(
        self, project: Project, limit: int = PROJECT_TRANSACTIONS_LIMIT
    ) -> list[dict]:
        if self.ledger is None:
            return []
        excluded = self.context.provision_ids | self.context.internal_transfer_ids
        stmt = (
            self._splits(
                LedgerSplit.id,
                LedgerTransaction.date,
                LedgerTransaction.name,
                LedgerSplit.amount,
                LedgerSplit.category_id,
                LedgerCategory.name,
                LedgerAccount.name,
                LedgerSplit.comment,
            )
            .outerjoin(LedgerCategory, LedgerSplit.category_id == LedgerCategory.id)
            .outerjoin(LedgerAccount, LedgerTransaction.account_id == LedgerAccount.id)
            .where(LedgerSplit.project == project.ledger_key)
        )
        stmt = self._without(stmt, excluded)
        stmt = stmt.order_by(LedgerTransaction.date.desc(), LedgerSplit.id.desc()).limit(limit)
        return [
            {
                "id": split_id,
                "date": (txn_date or "")[:10],
                "description": name or "",
                "amount": cents_to_euros(ledger_cents(amount)),
                "categoryId": category_id,
                "category": category_name,
                "account": account_name,
                "comment": comment,
            }
            for (
                split_id,
                txn_date,
                name,
                amount,
                category_id,
                category_name,
                account_name,
                comment,
            ) in self.ledger.execute(stmt).all()
        ]

    def ledger_project_tags(self) -> list[str]:
        if self.ledger is None:
            return []
        rows = self.ledger.scalars(
            select(func.trim(LedgerSplit.project))
            .where(LedgerSplit.project.is_not(None), func.trim(LedgerSplit.project) != "")
            .distinct()
        ).all()
        return sorted(set(rows))


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReconciledMonth:
    project_id: int
    month: str
    saved_cents: int
    spent_cents: int
    from_allocation: bool


@dataclass(frozen=True)
class SavedToDate:
    total_cents: int
    manual_cents: int
    allocation_cents: int
    from_ledger_cents: int


class ReconciliationService:
    """One savings figure per project and month.

    A nonzero allocation replaces the ledger figure for its month; it is never
    added to it, since the allocation is already mirrored as a manual
    transaction.
    """

    def __init__(self, session: Session, aggregation: LedgerAggregationService) -> None:
        self.session = session
        self.aggregation = aggregation

    def _allocations(
        self, project_ids: list[int], *, month: Optional[str] = None, up_to: Optional[str] = None
    ) -> dict[tuple[int, str], int]:
        if not project_ids:
            return {}
        stmt = select(
            ProjectAllocation.project_id,
            ProjectAllocation.month,
            ProjectAllocation.amount_cents,
        ).where(
            ProjectAllocation.project_id.in_(project_ids),
            ProjectAllocation.amount_cents != 0,
        )
        if month is not None:
            stmt = stmt.where(ProjectAllocation.month == month)
        if up_to is not None:
            stmt = stmt.where(ProjectAllocation.month <= up_to)
        return {(pid, key): cents for pid, key, cents in self.session.execute(stmt).all()}

    def _manual_savings(
        self, project_ids: list[int], *, month: Optional[str] = None, up_to: Optional[str] = None
    ) -> dict[tuple[int, str], int]:
        if not project_ids:
            return {}
        txn_month = func.strftime("%Y-%m", ManualTransaction.date)
        stmt = (
            select(
                ManualTransaction.project_id,
                txn_month,
                func.coalesce(func.sum(ManualTransaction.amount_cents), 0),
            )
            .where(
                ManualTransaction.project_id.in_(project_ids),
                ManualTransaction.description.like(f"{MIRROR_PREFIX}%"),
                ManualTransaction.type == TransactionType.income,
            )
            .group_by(ManualTransaction.project_id, txn_month)
        )
        if month is not None:
            stmt = stmt.where(txn_month == month)
        if up_to is not None:
            stmt = stmt.where(txn_month <= up_to)
        return {
            (pid, key): int(cents or 0)
            for pid, key, cents in self.session.execute(stmt).all()
        }

    def monthly_breakdown(self, month: str, projects: Iterable[Project]) -> dict[int, int]:
        projects = list(projects)
        ids = [project.id for project in projects]
        allocations = self._allocations(ids, month=month)
        manual = self._manual_savings(ids, month=month)
        ledger = self.aggregation.per_project_savings(month, projects)
        breakdown: dict[int, int] = {}
        for project_id in ids:
            allocated = allocations.get((project_id, month))
            if allocated:
                breakdown[project_id] = allocated
            else:
                breakdown[project_id] = ledger.get(project_id, 0) + manual.get(
                    (project_id, month), 0
                )
        return breakdown

    def reconcile(self, project: Project, month: str) -> ReconciledMonth:
        parse_month(month)
        allocated = self._allocations([project.id], month=month).get((project.id, month))
        if allocated:
            saved = allocated
        else:
            saved = self.monthly_breakdown(month, [project])[project.id]
        return ReconciledMonth(
            project_id=project.id,
            month=month,
            saved_cents=saved,
            spent_cents=self.aggregation.project_spent(project, month),
            from_allocation=bool(allocated),
        )

    def saved_by_month(
        self, project: Project, up_to: Optional[str] = None
    ) -> dict[str, tuple[str, int]]:
        """Month -> (source, cents) where source is ``allocation``, ``ledger`` or ``manual``."""
        allocations = self._allocations([project.id], up_to=up_to)
        manual = self._manual_savings([project.id], up_to=up_to)
        ledger = self.aggregation.project_savings([project.ledger_key], up_to=up_to)

        months: dict[str, tuple[str, int]] = {}
        for (_, key), cents in ledger.items():
            months[key] = ("ledger", months.get(key, ("ledger", 0))[1] + cents)
        for (_, key), cents in manual.items():
            source, current = months.get(key, ("manual", 0))
            months[key] = (source, current + cents)
        for (_, key), cents in allocations.items():
            months[key] = ("allocation", cents)
        return dict(sorted(months.items()))

    def saved_to_date(self, project: Project, as_of: Optional[str] = None) -> SavedToDate:
        per_month = self.saved_by_month(project, up_to=as_of)
        manual_only = self._manual_savings([project.id], up_to=as_of)
        allocation_total = sum(c for s, c in per_month.values() if s == "allocation")
        manual_total = sum(
            cents
            for (_, key), cents in manual_only.items()
            if per_month.get(key, ("allocation", 0))[0] != "allocation"
        )
        raw = sum(cents for _, cents in per_month.values())
        total = self._clamp(project, raw, as_of)
        return SavedToDate(
            total_cents=total,
            manual_cents=manual_total,
            allocation_cents=allocation_total,
            from_ledger_cents=raw - allocation_total - manual_total,
        )

    def _clamp(self, project: Project, raw_cents: int, as_of: Optional[str]) -> int:
        saved = max(0, raw_cents)
        budget = project.planned_budget_cents
        # Projects without a budget (e.g. synced from ledger tags) have no ceiling.
        if budget > 0 and saved >= budget - TOLERANCE_CENTS:
            saved = budget
        balance = self.aggregation.savings_balance(as_of or month_key(today_local()))
        if balance is not None:
            saved = min(saved, max(0, balance))
        return saved


# ---------------------------------------------------------------------------
# Mirror manual transactions
# ---------------------------------------------------------------------------


def allocation_source_key(project_id: int, month: str) -> str:
    return f"{project_id}:{month}"


def free_savings_source_key(month: str) -> str:
    return f"free:{month}"


def monthly_saving_source_key(month: str) -> str:
    return f"manual:{month}"


def mirror_description(month: str, label: str) -> str:
    return f"{MIRROR_PREFIX} {month_label(month)} - {label}"


def _upsert_mirror(
    session: Session,
    *,
    source_key: str,
    source: TransactionSource,
    month: str,
    amount_cents: int,
    label: str,
    project_id: Optional[int] = None,
) -> ManualTransaction:
    mirror = session.scalar(
        select(ManualTransaction).where(ManualTransaction.source_key == source_key)
    )
    if mirror is None:
        mirror = ManualTransaction(source_key=source_key, source=source)
        session.add(mirror)
    mirror.project_id = project_id
    mirror.date = month_end(month)
    mirror.description = mirror_description(month, label)
    mirror.amount_cents = amount_cents
    mirror.type = TransactionType.income if amount_cents >= 0 else TransactionType.expense
    mirror.category = MIRROR_CATEGORY
    return mirror


def _delete_mirror(session: Session, source_key: str) -> None:
    session.execute(
        delete(ManualTransaction).where(ManualTransaction.source_key == source_key)
    )


# ---------------------------------------------------------------------------
# Allocations
# ---------------------------------------------------------------------------


class AllocationService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_month(self, month: str) -> list[ProjectAllocation]:
        parse_month(month)
        return list(
            self.session.scalars(
                select(ProjectAllocation)
                .join(Project, ProjectAllocation.project_id == Project.id)
                .where(ProjectAllocation.month == month)
                .order_by(Project.name)
                .execution_options(populate_existing=True)
            ).all()
        )

    def free_savings(self, month: str) -> int:
        mirror = self.session.scalar(
            select(ManualTransaction).where(
                ManualTransaction.source_key == free_savings_source_key(month)
            )
        )
        return mirror.amount_cents if mirror else 0

    def get(self, project_id: int, month: str) -> Optional[ProjectAllocation]:
        return self.session.scalar(
            select(ProjectAllocation)
            .where(
                ProjectAllocation.project_id == project_id,
                ProjectAllocation.month == month,
            )
            .execution_options(populate_existing=True)
        )

    def _upsert(self, project: Project, month: str, amount_cents: int) -> None:
        stmt = sqlite_insert(ProjectAllocation).values(
            project_id=project.id, month=month, amount_cents=amount_cents
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["project_id", "month"],
            set_={
                "amount_cents": stmt.excluded.amount_cents,
                "updated_at": datetime.utcnow(),
            },
        )
        self.session.execute(stmt)
        _upsert_mirror(
            self.session,
            source_key=allocation_source_key(project.id, month),
            source=TransactionSource.allocation,
            month=month,
            amount_cents=amount_cents,
            label=project.name,
            project_id=project.id,
        )

    def _remove(self, project_id: int, month: str) -> None:
        self.session.execute(
            delete(ProjectAllocation).where(
                ProjectAllocation.project_id == project_id,
                ProjectAllocation.month == month,
            )
        )
        _delete_mirror(self.session, allocation_source_key(project_id, month))

    def save(
        self,
        month: str,
        allocations: list[AllocationIn],
        free_savings: Optional[object] = None,
    ) -> list[ProjectAllocation]:
        parse_month(month)
        project_ids = [item.project_id for item in allocations]
        if len(project_ids) != len(set(project_ids)):
            raise ValueError("A project can only be allocated once per month")
        written = 0
        try:
            for item in allocations:
                project = self.session.get(Project, item.project_id)
                if project is None:
                    raise NotFoundError(f"Project {item.project_id} not found")
                amount_cents = parse_amount(item.amount)
                if amount_cents == 0:
                    self._remove(project.id, month)
                else:
                    self._upsert(project, month, amount_cents)
                    written += 1
            if free_savings is not None:
                free_cents = parse_amount(free_savings)
                if free_cents > 0:
                    _upsert_mirror(
                        self.session,
                        source_key=free_savings_source_key(month),
                        source=TransactionSource.allocation,
                        month=month,
                        amount_cents=free_cents,
                        label=FREE_SAVINGS_LABEL,
                    )
                else:
                    _delete_mirror(self.session, free_savings_source_key(month))
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception(f"allocations_save_failed: month={month}")
            raise
        logger.info(
            f"allocations_saved: month={month} rows={written} "
            f"removed={len(allocations) - written}"
        )
        return self.list_for_month(month)


# ---------------------------------------------------------------------------
# Monthly manual savings
# ---------------------------------------------------------------------------


class MonthlyManualSavingsService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _row(self, month: str) -> Optional[MonthlyManualSaving]:
        return self.session.scalar(
            select(MonthlyManualSaving).where(MonthlyManualSaving.month == month)
        )

    def get(self, month: str) -> int:
        parse_month(month)
        row = self._row(month)
        return row.amount_cents if row else 0

    def list_all(self) -> list[MonthlyManualSaving]:
        return list(
            self.session.scalars(
                select(MonthlyManualSaving).order_by(MonthlyManualSaving.month)
            ).all()
        )

    def amounts_between(self, span: MonthSpan) -> dict[str, int]:
        rows = self.session.execute(
            select(MonthlyManualSaving.month, MonthlyManualSaving.amount_cents).where(
                MonthlyManualSaving.month.between(span.start, span.end)
            )
        ).all()
        return {month: cents for month, cents in rows}

    def save(self, month: str, amount: object) -> int:
        parse_month(month)
        amount_cents = parse_amount(amount, allow_negative=False)
        try:
            row = self._row(month)
            if amount_cents == 0:
                if row is not None:
                    self.session.delete(row)
                _delete_mirror(self.session, monthly_saving_source_key(month))
            else:
                if row is None:
                    row = MonthlyManualSaving(month=month)
                    self.session.add(row)
                row.amount_cents = amount_cents
                _upsert_mirror(
                    self.session,
                    source_key=monthly_saving_source_key(month),
                    source=TransactionSource.monthly_saving,
                    month=month,
                    amount_cents=amount_cents,
                    label=MANUAL_SAVINGS_LABEL,
                )
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception(f"monthly_manual_saving_failed: month={month}")
            raise
        logger.info(f"monthly_manual_saving_saved: month={month} cents={amount_cents}")
        return amount_cents


# ---------------------------------------------------------------------------
# Manual transactions
# ---------------------------------------------------------------------------


class ManualTransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(
        self, project_id: Optional[int] = None, month: Optional[str] = None
    ) -> list[ManualTransaction]:
        stmt = select(ManualTransaction)
        if project_id is not None:
            stmt = stmt.where(ManualTransaction.project_id == project_id)
        if month is not None:
            stmt = stmt.where(
                ManualTransaction.date.between(month_start(month), month_end(month))
            )
        return list(
            self.session.scalars(
                stmt.order_by(ManualTransaction.date.desc(), ManualTransaction.id.desc())
            ).all()
        )

    def create(self, data: ManualTransactionIn) -> ManualTransaction:
        amount_cents = parse_amount(data.amount, allow_negative=False)
        if amount_cents == 0:
            raise ValueError("Amount must not be zero")
        if data.project_id is not None and self.session.get(Project, data.project_id) is None:
            raise NotFoundError(f"Project {data.project_id} not found")
        if data.type == TransactionType.expense:
            amount_cents = -amount_cents
        txn = ManualTransaction(
            project_id=data.project_id,
            date=data.date,
            description=data.description.strip(),
            amount_cents=amount_cents,
            type=data.type,
            category=data.category.strip(),
            comment=data.comment,
            source=TransactionSource.manual,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.session.get(ManualTransaction, transaction_id)
        if txn is None:
            raise NotFoundError("Transaction not found")
        if txn.source != TransactionSource.manual:
            raise ValueError(
                "Generated transactions follow their allocation or monthly entry"
            )
        self.session.delete(txn)
        self.session.commit()


# ---------------------------------------------------------------------------
# Saving goals
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GoalSuggestion:
    suggested_goal_cents: int
    remaining_budget_cents: int
    remaining_months: int
    total_months: int
    current_month_index: int
    saved_to_date_cents: int
    expected_baseline_cents: int
    performance_gap_cents: int
    status: str
    current_goal_cents: Optional[int] = None


def compute_goal_suggestion(
    planned_budget_cents: int,
    start_month: str,
    end_month: str,
    as_of_month: str,
    saved_to_date_cents: int,
    current_goal_cents: Optional[int] = None,
) -> GoalSuggestion:
    """Monthly amount needed to finish the budget on time, and how far along we are.

    Months are counted inclusively from the start month, so the index is 0 or
    negative before the project begins and the baseline follows the straight
    line on both sides. Amounts are rounded up to whole currency units. After
    the end month no months remain and the whole remainder is due at once.
    """
    if planned_budget_cents <= 0:
        raise InsufficientProjectData("Project needs a positive planned budget")
    total_months = months_between_inclusive(start_month, end_month)
    if total_months < 1:
        raise InsufficientProjectData("Project end date is before its start date")
    current_index = months_between_inclusive(start_month, as_of_month)
    remaining_months = max(0, total_months - current_index + 1)

    saved = saved_to_date_cents
    if saved >= planned_budget_cents - TOLERANCE_CENTS:
        saved = planned_budget_cents
    remaining_budget = max(0, planned_budget_cents - saved)

    if remaining_budget <= TOLERANCE_CENTS:
        suggested = 0
    elif remaining_months > 0:
        suggested = ceil_to_unit(-(-remaining_budget // remaining_months))
    else:
        suggested = ceil_to_unit(remaining_budget)

    baseline = round(planned_budget_cents * current_index / total_months)
    gap = saved - baseline

    reference = current_goal_cents if current_goal_cents else suggested
    threshold = reference * GOAL_STATUS_RATIO
    if remaining_budget <= TOLERANCE_CENTS:
        status = "completed"
    elif gap > threshold:
        status = "ahead"
    elif gap < -threshold:
        status = "behind"
    else:
        status = "on_track"

    return GoalSuggestion(
        suggested_goal_cents=suggested,
        remaining_budget_cents=remaining_budget,
        remaining_months=remaining_months,
        total_months=total_months,
        current_month_index=current_index,
        saved_to_date_cents=saved,
        expected_baseline_cents=baseline,
        performance_gap_cents=gap,
        status=status,
        current_goal_cents=current_goal_cents,
    )


def classify_month(goal_cents: Optional[int], actual_cents: int) -> tuple[Optional[int], str]:
    """Delta and status of a month against its goal, within a 5% band."""
    if goal_cents is None:
        return None, "no_goal"
    delta = actual_cents - goal_cents
    band = goal_cents * PERFORMANCE_BAND_PERCENT
    if delta * 100 > band:
        return delta, "over"
    if delta * 100 < -band:
        return delta, "under"
    return delta, "on_track"


def _get_project(session: Session, project_id: int) -> Project:
    project = session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project not found")
    return project


class SavingGoalService:
    def __init__(
        self,
        session: Session,
        ledger: Optional[Session] = None,
        context: Optional[SavingsContext] = None,
    ) -> None:
        self.session = session
        self.reconciler = ReconciliationService(
            session, LedgerAggregationService(ledger, context or SavingsContext.empty())
        )

    def list_goals(self, project_id: int) -> list[ProjectSavingGoal]:
        _get_project(self.session, project_id)
        return list(
            self.session.scalars(
                select(ProjectSavingGoal)
                .where(ProjectSavingGoal.project_id == project_id)
                .order_by(ProjectSavingGoal.start_date, ProjectSavingGoal.id)
            ).all()
        )

    def goal_on(self, project_id: int, day: date) -> Optional[ProjectSavingGoal]:
        return self.session.scalar(
            select(ProjectSavingGoal)
            .where(
                ProjectSavingGoal.project_id == project_id,
                ProjectSavingGoal.start_date <= day,
                or_(
                    ProjectSavingGoal.end_date.is_(None),
                    ProjectSavingGoal.end_date >= day,
                ),
            )
            .order_by(ProjectSavingGoal.start_date.desc(), ProjectSavingGoal.id.desc())
            .limit(1)
        )

    def current_goal(
        self, project_id: int, month: Optional[str] = None
    ) -> Optional[ProjectSavingGoal]:
        _get_project(self.session, project_id)
        key = month or month_key(today_local())
        return self.goal_on(project_id, month_start(key))

    def _open_goals(self, project_id: int) -> list[ProjectSavingGoal]:
        return list(
            self.session.scalars(
                select(ProjectSavingGoal).where(
                    ProjectSavingGoal.project_id == project_id,
                    ProjectSavingGoal.end_date.is_(None),
                )
            ).all()
        )

    def _close_and_insert(
        self,
        project_id: int,
        amount_cents: int,
        start_date: date,
        close_on: date,
        reason: Optional[str],
    ) -> ProjectSavingGoal:
        try:
            for open_goal in self._open_goals(project_id):
                # Superseding a goal in its own first month leaves it zero-length.
                open_goal.end_date = close_on
            goal = ProjectSavingGoal(
                project_id=project_id,
                amount_cents=amount_cents,
                start_date=start_date,
                end_date=None,
                reason=reason,
            )
            self.session.add(goal)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception(f"saving_goal_write_failed: project_id={project_id}")
            raise
        self.session.refresh(goal)
        logger.info(
            f"saving_goal_started: project_id={project_id} "
            f"start={start_date.isoformat()} cents={amount_cents}"
        )
        return goal

    def create_goal(
        self,
        project_id: int,
        amount: object,
        start_date: date,
        reason: Optional[str] = None,
    ) -> ProjectSavingGoal:
        _get_project(self.session, project_id)
        amount_cents = parse_amount(amount, allow_negative=False)
        for goal in self.list_goals(project_id):
            if goal.end_date is None:
                overlaps = goal.start_date > start_date
            else:
                # Zero-length goals were superseded and cover no day.
                overlaps = goal.start_date <= goal.end_date and goal.end_date >= start_date
            if overlaps:
                raise ValueError("Goal start date overlaps the existing goal history")
        return self._close_and_insert(
            project_id,
            amount_cents,
            start_date,
            start_date - timedelta(days=1),
            reason or "Modification manuelle",
        )

    def accept(
        self,
        project_id: int,
        amount: object,
        reason: Optional[str] = None,
        *,
        today: Optional[date] = None,
    ) -> ProjectSavingGoal:
        _get_project(self.session, project_id)
        amount_cents = ceil_to_unit(parse_amount(amount, allow_negative=False))
        first = (today or today_local()).replace(day=1)
        return self._close_and_insert(
            project_id,
            amount_cents,
            first,
            first - timedelta(days=1),
            reason or "adjustment",
        )

    def suggest(self, project_id: int, as_of: Optional[str] = None) -> dict:
        project = _get_project(self.session, project_id)
        if project.start_date is None or project.end_date is None:
            raise InsufficientProjectData("Project needs a start and an end date")
        if project.planned_budget_cents <= 0:
            raise InsufficientProjectData("Project needs a positive planned budget")
        as_of = as_of or month_key(today_local())
        parse_month(as_of)
        saved = self.reconciler.saved_to_date(project, as_of)
        current = self.goal_on(project_id, month_start(as_of))
        suggestion = compute_goal_suggestion(
            project.planned_budget_cents,
            month_key(project.start_date),
            month_key(project.end_date),
            as_of,
            saved.total_cents,
            current.amount_cents if current else None,
        )
        return {
            "projectId": project.id,
            "month": as_of,
            "currentGoal": cents_to_euros(suggestion.current_goal_cents),
            "suggestedGoal": cents_to_euros(suggestion.suggested_goal_cents),
            "remainingBudget": cents_to_euros(suggestion.remaining_budget_cents),
            "remainingMonths": suggestion.remaining_months,
            "totalMonths": suggestion.total_months,
            "currentMonthIndex": suggestion.current_month_index,
            "savedToDate": cents_to_euros(suggestion.saved_to_date_cents),
            "manualSaved": cents_to_euros(saved.manual_cents),
            "expectedSavedBaseline": cents_to_euros(suggestion.expected_baseline_cents),
            "performanceGap": cents_to_euros(suggestion.performance_gap_cents),
            "status": suggestion.status,
        }

    def monthly_performance(self, project_id: int, month: str) -> dict:
        project = _get_project(self.session, project_id)
        parse_month(month)
        goal = self.goal_on(project_id, month_start(month))
        actual = self.reconciler.reconcile(project, month).saved_cents
        goal_cents = goal.amount_cents if goal else None
        delta, status = classify_month(goal_cents, actual)
        return {
            "projectId": project.id,
            "month": month,
            "goal": cents_to_euros(goal_cents),
            "actualSavings": cents_to_euros(actual),
            "delta": cents_to_euros(delta),
            "status": status,
        }


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def initial_goal_for(project: Project, today: date) -> Optional[tuple[date, int]]:
    """Start and amount of the first goal of a new project, if it has one."""
    if (
        project.start_date is None
        or project.end_date is None
        or project.planned_budget_cents <= 0
    ):
        return None
    current = month_key(today)
    start = month_key(project.start_date)
    end = month_key(project.end_date)
    if months_between_inclusive(start, end) < 1 or current > end:
        return None
    first = max(start, current)
    remaining_months = months_between_inclusive(first, end)
    amount = ceil_to_unit(-(-project.planned_budget_cents // remaining_months))
    return month_start(first), amount


class ProjectService:
    def __init__(
        self,
        session: Session,
        ledger: Optional[Session] = None,
        context: Optional[SavingsContext] = None,
    ) -> None:
        self.session = session
        self.aggregation = LedgerAggregationService(
            ledger, context or SavingsContext.empty()
        )
        self.reconciler = ReconciliationService(session, self.aggregation)

    def get(self, project_id: int) -> Project:
        return _get_project(self.session, project_id)

    def list_all(self, include_archived: bool = False) -> list[Project]:
        stmt = select(Project).order_by(Project.name)
        if not include_archived:
            stmt = stmt.where(Project.archived.is_(False))
        return list(self.session.scalars(stmt).all())

    def list_with_totals(self, include_archived: bool = False) -> list[dict]:
        rows = []
        for project in self.list_all(include_archived):
            saved = self.reconciler.saved_to_date(project)
            rows.append(
                {
                    "project": project,
                    "currentSavings": cents_to_euros(saved.total_cents),
                    "currentSpent": cents_to_euros(self.aggregation.project_spent(project)),
                }
            )
        return rows

    def _check_name(self, name: str, exclude_id: Optional[int] = None) -> str:
        clean = name.strip()
        if not clean:
            raise ValueError("Project name is required")
        stmt = select(Project.id).where(func.lower(Project.name) == clean.lower())
        if exclude_id is not None:
            stmt = stmt.where(Project.id != exclude_id)
        if self.session.scalar(stmt) is not None:
            raise ValueError(f"A project named '{clean}' already exists")
        return clean

    @staticmethod
    def _check_dates(start: Optional[date], end: Optional[date]) -> None:
        if start and end and end < start:
            raise ValueError("End date must not be before start date")

    def create(self, data: ProjectIn, *, today: Optional[date] = None) -> Project:
        name = self._check_name(data.name)
        self._check_dates(data.start_date, data.end_date)
        project = Project(
            name=name,
            start_date=data.start_date,
            end_date=data.end_date,
            planned_budget_cents=parse_amount(data.planned_budget, allow_negative=False),
            ledger_tag=(data.ledger_tag or "").strip() or None,
        )
        try:
            self.session.add(project)
            self.session.flush()
            initial = initial_goal_for(project, today or today_local())
            if initial is not None:
                start, amount_cents = initial
                self.session.add(
                    ProjectSavingGoal(
                        project_id=project.id,
                        amount_cents=amount_cents,
                        start_date=start,
                        reason="Objectif initial",
                    )
                )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(project)
        logger.info(f"project_created: id={project.id} name={project.name!r}")
        return project

    def update(self, project_id: int, data: ProjectUpdate) -> Project:
        project = self.get(project_id)
        fields = data.model_dump(exclude_unset=True)
        if "name" in fields and fields["name"] is not None:
            project.name = self._check_name(fields["name"], exclude_id=project.id)
        if "start_date" in fields:
            project.start_date = fields["start_date"]
        if "end_date" in fields:
            project.end_date = fields["end_date"]
        self._check_dates(project.start_date, project.end_date)
        if fields.get("planned_budget") is not None:
            project.planned_budget_cents = parse_amount(
                fields["planned_budget"], allow_negative=False
            )
        if fields.get("archived") is not None:
            project.archived = fields["archived"]
        if "ledger_tag" in fields:
            project.ledger_tag = (fields["ledger_tag"] or "").strip() or None
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(project)
        return project

    def delete(self, project_id: int) -> None:
        project = self.get(project_id)
        self.session.delete(project)
        self.session.commit()
        logger.info(f"project_deleted: id={project_id}")

    def sync_from_ledger(self) -> list[Project]:
        known = {
            normalize_name(value)
            for project in self.list_all(include_archived=True)
            for value in (project.name, project.ledger_tag)
            if value
        }
        created: list[Project] = []
        try:
            for tag in self.aggregation.ledger_project_tags():
                if normalize_name(tag) in known:
                    continue
                project = Project(name=tag, ledger_tag=tag)
                self.session.add(project)
                created.append(project)
                known.add(normalize_name(tag))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(f"projects_synced: created={len(created)}")
        return created

    def auto_map(self) -> list[dict]:
        tags = self.aggregation.ledger_project_tags()
        if not tags:
            return []
        mapped = []
        for project in self.list_all(include_archived=True):
            if project.ledger_tag:
                continue
            target = normalize_name(project.name)
            best_tag: Optional[str] = None
            best_score = 0.0
            for tag in tags:
                score = Levenshtein.normalized_similarity(target, normalize_name(tag)) * 100
                if score > best_score:
                    best_tag, best_score = tag, score
            if best_tag is not None and best_score >= AUTO_MAP_MIN_SCORE:
                project.ledger_tag = best_tag
                mapped.append(
                    {
                        "projectId": project.id,
                        "projectName": project.name,
                        "ledgerTag": best_tag,
                        "score": round(best_score, 1),
                    }
                )
        self.session.commit()
        logger.info(f"projects_auto_mapped: mapped={len(mapped)}")
        return mapped

    def transactions(self, project_id: int) -> list[dict]:
        return self.aggregation.project_transactions(self.get(project_id))


# ---------------------------------------------------------------------------
# Monthly savings
# ---------------------------------------------------------------------------


class MonthlySavingsService:
    def __init__(
        self,
        session: Session,
        ledger: Optional[Session] = None,
        context: Optional[SavingsContext] = None,
    ) -> None:
        self.session = session
        self.aggregation = LedgerAggregationService(
            ledger, context or SavingsContext.empty()
        )
        self.reconciler = ReconciliationService(session, self.aggregation)

    def month_row(
        self, month: str, projects: list[Project], manual_cents: int = 0
    ) -> dict:
        total_savings = self.aggregation.total_savings(month)
        breakdown = self.reconciler.monthly_breakdown(month, projects)
        # Attributions above the month's global total would go negative here.
        free = max(0, total_savings - sum(breakdown.values()))
        return {
            "month": month,
            "label": month_label(month),
            "totalSavings": cents_to_euros(total_savings),
            "totalSpent": cents_to_euros(self.aggregation.total_spent(month)),
            "projectBreakdown": {
                str(project_id): cents_to_euros(cents)
                for project_id, cents in breakdown.items()
                if cents
            },
            "freeSavings": cents_to_euros(free),
            "savingsBalance": cents_to_euros(self.aggregation.savings_balance(month)),
            "manualSavings": cents_to_euros(manual_cents),
        }

    def monthly_savings(self, span: MonthSpan) -> list[dict]:
        projects = list(self.session.scalars(select(Project).order_by(Project.id)).all())
        manual = MonthlyManualSavingsService(self.session).amounts_between(span)
        return [
            self.month_row(month, projects, manual.get(month, 0)) for month in span.months()
        ]


# ---------------------------------------------------------------------------
# Category matrix
# ---------------------------------------------------------------------------


class CategoryMatrixService:
    def __init__(self, ledger: Optional[Session], context: SavingsContext) -> None:
        self.ledger = ledger
        self.context = context

    def categories(self) -> list[dict]:
        taxonomy = self.context.taxonomy
        return [
            {
                "id": node.id,
                "name": node.name,
                "parentId": node.parent_id,
                "rootName": taxonomy.root_name(node.id),
                "excluded": taxonomy.is_excluded(node.id),
            }
            for node in sorted(taxonomy.nodes(), key=lambda n: normalize_name(n.name))
        ]

    def matrix(self, span: MonthSpan) -> dict:
        months = span.months()
        checking = self.context.accounts.checking_ids
        if self.ledger is None or not checking:
            return {"months": months, "rows": []}
        split_month = month_of(LedgerTransaction.date)
        rows = self.ledger.execute(
            select(
                LedgerSplit.category_id,
                LedgerSplit.comment,
                split_month,
                func.sum(LedgerSplit.amount),
            )
            .select_from(LedgerSplit)
            .join(LedgerTransaction, LedgerSplit.transaction_id == LedgerTransaction.id)
            .where(
                not_planned(),
                LedgerTransaction.account_id.in_(checking),
                split_month.between(span.start, span.end),
            )
            .group_by(LedgerSplit.category_id, LedgerSplit.comment, split_month)
        ).all()

        taxonomy = self.context.taxonomy
        totals: dict[Optional[str], dict[str, int]] = {}
        for category_id, comment, key, amount in rows:
            if taxonomy.is_excluded(category_id, comment):
                continue
            bucket = totals.setdefault(category_id, {})
            bucket[key] = bucket.get(key, 0) + ledger_cents(amount)

        out = []
        for category_id, by_month in totals.items():
            node = taxonomy.get(category_id)
            out.append(
                {
                    "categoryId": category_id,
                    "name": node.name if node else "Sans catégorie",
                    "rootName": taxonomy.root_name(category_id),
                    "months": {m: cents_to_euros(by_month.get(m, 0)) for m in months},
                    "total": cents_to_euros(sum(by_month.values())),
                }
            )
        out.sort(key=lambda row: normalize_name(row["name"]))
        return {"months": months, "rows": out}
