import logging
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, open_ledger_session, session_scope
from models import (
    AccountPreference,
    ManualTransaction,
    Project,
    ProjectAllocation,
    ProjectSavingGoal,
)
from money import cents_to_euros
from periods import resolve_month_span
from schemas import (
    AccountPreferenceIn,
    AllocationsUpdateIn,
    GoalAcceptIn,
    ManualSavingsIn,
    ManualTransactionIn,
    ProjectIn,
    ProjectUpdate,
    SavingGoalIn,
)
from services import (
    AccountService,
    AllocationService,
    CategoryMatrixService,
    ManualTransactionService,
    MonthlyManualSavingsService,
    MonthlySavingsService,
    NotFoundError,
    ProjectService,
    SavingGoalService,
    SavingsContext,
    build_context,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Savings Projects")


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_ledger() -> Iterator[Optional[Session]]:
    ledger = open_ledger_session()
    try:
        yield ledger
    finally:
        if ledger is not None:
            ledger.close()


def get_context(
    db: Session = Depends(get_db), ledger: Optional[Session] = Depends(get_ledger)
) -> SavingsContext:
    return build_context(db, ledger)


def http_error(exc: ValueError) -> HTTPException:
    status = 404 if isinstance(exc, NotFoundError) else 400
    return HTTPException(status_code=status, detail=str(exc))


@app.on_event("startup")
def startup_event():
    ledger = open_ledger_session()
    if ledger is None:
        return
    try:
        with session_scope() as db:
            ProjectService(db, ledger, build_context(db, ledger)).sync_from_ledger()
    finally:
        ledger.close()


def project_out(project: Project) -> dict:
    return {
        "id": project.id,
        "name": project.name,
        "ledgerTag": project.ledger_tag,
        "startDate": project.start_date.isoformat() if project.start_date else None,
        "endDate": project.end_date.isoformat() if project.end_date else None,
        "plannedBudget": cents_to_euros(project.planned_budget_cents),
        "archived": project.archived,
    }


def goal_out(goal: Optional[ProjectSavingGoal]) -> Optional[dict]:
    if goal is None:
        return None
    return {
        "id": goal.id,
        "projectId": goal.project_id,
        "amount": cents_to_euros(goal.amount_cents),
        "startDate": goal.start_date.isoformat(),
        "endDate": goal.end_date.isoformat() if goal.end_date else None,
        "reason": goal.reason,
    }


def allocation_out(allocation: ProjectAllocation) -> dict:
    return {
        "id": allocation.id,
        "month": allocation.month,
        "projectId": allocation.project_id,
        "projectName": allocation.project.name if allocation.project else None,
        "allocatedAmount": cents_to_euros(allocation.amount_cents),
        "createdAt": allocation.created_at.isoformat(),
        "updatedAt": allocation.updated_at.isoformat(),
    }


def manual_transaction_out(txn: ManualTransaction) -> dict:
    return {
        "id": txn.id,
        "projectId": txn.project_id,
        "date": txn.date.isoformat(),
        "description": txn.description,
        "amount": cents_to_euros(txn.amount_cents),
        "type": txn.type.value,
        "category": txn.category,
        "comment": txn.comment,
        "source": txn.source.value,
    }


def preference_out(pref: AccountPreference) -> dict:
    return {
        "accountId": pref.account_id,
        "accountName": pref.account_name,
        "includeSavings": pref.include_savings,
        "includeChecking": pref.include_checking,
    }


@app.get("/api/health")
def api_health(ledger: Optional[Session] = Depends(get_ledger)):
    return {"status": "ok", "ledger": ledger is not None}


# Projects


@app.get("/api/projects")
def api_projects(
    include_archived: bool = False,
    db: Session = Depends(get_db),
    ledger: Optional[Session] = Depends(get_ledger),
    context: SavingsContext = Depends(get_context),
):
    rows = ProjectService(db, ledger, context).list_with_totals(include_archived)
    return [
        {
            **project_out(row["project"]),
            "currentSavings": row["currentSavings"],
            "currentSpent": row["currentSpent"],
        }
        for row in rows
    ]


@app.post("/api/projects", status_code=201)
def api_create_project(data: ProjectIn, db: Session = Depends(get_db)):
    try:
        project = ProjectService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return project_out(project)


@app.post("/api/projects/sync")
def api_sync_projects(
    db: Session = Depends(get_db),
    ledger: Optional[Session] = Depends(get_ledger),
    context: SavingsContext = Depends(get_context),
):
    created = ProjectService(db, ledger, context).sync_from_ledger()
    return {"created": [project_out(project) for project in created]}


@app.post("/api/projects/auto-map")
def api_auto_map_projects(
    db: Session = Depends(get_db),
    ledger: Optional[Session] = Depends(get_ledger),
    context: SavingsContext = Depends(get_context),
):
    return {"mapped": ProjectService(db, ledger, context).auto_map()}


@app.patch("/api/projects/{project_id}")
def api_update_project(
    project_id: int, data: ProjectUpdate, db: Session = Depends(get_db)
):
    try:
        project = ProjectService(db).update(project_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return project_out(project)


@app.delete("/api/projects/{project_id}", status_code=204)
def api_delete_project(project_id: int, db: Session = Depends(get_db)):
    try:
        ProjectService(db).delete(project_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/projects/{project_id}/transactions")
def api_project_transactions(
    project_id: int,
    db: Session = Depends(get_db),
    ledger: Optional[Session] = Depends(get_ledger),
    context: SavingsContext = Depends(get_context),
):
    try:
        return ProjectService(db, ledger, context).transactions(project_id)
    except ValueError as exc:
        raise http_error(exc) from exc


# Accounts


@app.get("/api/accounts")
def api_accounts(
    account_filter: Optional[str] = Query(None, alias="filter"),
    db: Session = Depends(get_db),
    ledger: Optional[Session] = Depends(get_ledger),
):
    try:
        return AccountService(db, ledger).list_accounts(account_filter)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/account-preferences")
def api_account_preferences(db: Session = Depends(get_db)):
    return [preference_out(pref) for pref in AccountService(db, None).list_preferences()]


@app.post("/api/account-preferences")
def api_save_account_preference(
    data: AccountPreferenceIn, db: Session = Depends(get_db)
):
    return preference_out(AccountService(db, None).save_preference(data))


@app.post("/api/account-preferences/save-all")
def api_save_all_account_preferences(
    data: list[AccountPreferenceIn], db: Session = Depends(get_db)
):
    try:
        prefs = AccountService(db, None).save_all_preferences(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [preference_out(pref) for pref in prefs]


@app.post("/api/account-preferences/refresh")
def api_refresh_account_preferences(
    db: Session = Depends(get_db), ledger: Optional[Session] = Depends(get_ledger)
):
    prefs = AccountService(db, ledger).refresh_preferences()
    return [preference_out(pref) for pref in prefs]


# Monthly savings


@app.get("/api/monthly-savings")
def api_monthly_savings(
    months: Optional[int] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    targetMonth: Optional[str] = None,
    db: Session = Depends(get_db),
    ledger: Optional[Session] = Depends(get_ledger),
    context: SavingsContext = Depends(get_context),
):
    try:
        span = resolve_month_span(months, start, end, targetMonth)
    except ValueError as exc:
        raise http_error(exc) from exc
    return MonthlySavingsService(db, ledger, context).monthly_savings(span)


@app.get("/api/monthly-manual-savings")
def api_monthly_manual_savings(db: Session = Depends(get_db)):
    return [
        {"month": row.month, "amount": cents_to_euros(row.amount_cents)}
        for row in MonthlyManualSavingsService(db).list_all()
    ]


@app.get("/api/monthly-manual-savings/{month}")
def api_monthly_manual_saving(month: str, db: Session = Depends(get_db)):
    try:
        cents = MonthlyManualSavingsService(db).get(month)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"month": month, "amount": cents_to_euros(cents)}


@app.put("/api/monthly-manual-savings/{month}")
def api_put_monthly_manual_saving(
    month: str, data: ManualSavingsIn, db: Session = Depends(get_db)
):
    try:
        cents = MonthlyManualSavingsService(db).save(month, data.amount)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"month": month, "amount": cents_to_euros(cents)}


# Allocations


@app.get("/api/project-allocations/{month}")
def api_project_allocations(month: str, db: Session = Depends(get_db)):
    service = AllocationService(db)
    try:
        allocations = service.list_for_month(month)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "month": month,
        "allocations": [allocation_out(a) for a in allocations],
        "freeSavings": cents_to_euros(service.free_savings(month)),
    }


@app.put("/api/project-allocations/{month}")
def api_put_project_allocations(
    month: str, data: AllocationsUpdateIn, db: Session = Depends(get_db)
):
    service = AllocationService(db)
    try:
        allocations = service.save(month, data.allocations, data.free_savings)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "month": month,
        "allocations": [allocation_out(a) for a in allocations],
        "freeSavings": cents_to_euros(service.free_savings(month)),
    }


# Saving goals


@app.post("/api/saving-goals", status_code=201)
def api_create_saving_goal(data: SavingGoalIn, db: Session = Depends(get_db)):
    try:
        goal = SavingGoalService(db).create_goal(
            data.project_id, data.amount, data.start_date, data.reason
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return goal_out(goal)


@app.get("/api/saving-goals/project/{project_id}")
def api_saving_goals(project_id: int, db: Session = Depends(get_db)):
    try:
        goals = SavingGoalService(db).list_goals(project_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [goal_out(goal) for goal in goals]


@app.get("/api/saving-goals/project/{project_id}/current")
def api_current_saving_goal(
    project_id: int, month: Optional[str] = None, db: Session = Depends(get_db)
):
    try:
        goal = SavingGoalService(db).current_goal(project_id, month)
    except ValueError as exc:
        raise http_error(exc) from exc
    return goal_out(goal)


@app.api_route("/api/saving-goals/project/{project_id}/suggest", methods=["GET", "POST"])
def api_suggest_saving_goal(
    project_id: int,
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    ledger: Optional[Session] = Depends(get_ledger),
    context: SavingsContext = Depends(get_context),
):
    try:
        return SavingGoalService(db, ledger, context).suggest(project_id, month)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/api/saving-goals/project/{project_id}/accept")
def api_accept_saving_goal(
    project_id: int, data: GoalAcceptIn, db: Session = Depends(get_db)
):
    try:
        goal = SavingGoalService(db).accept(project_id, data.new_amount, data.reason)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"ok": True, "goal": goal_out(goal)}


@app.get("/api/saving-goals/project/{project_id}/month/{month}")
def api_saving_goal_month(
    project_id: int,
    month: str,
    db: Session = Depends(get_db),
    ledger: Optional[Session] = Depends(get_ledger),
    context: SavingsContext = Depends(get_context),
):
    try:
        return SavingGoalService(db, ledger, context).monthly_performance(
            project_id, month
        )
    except ValueError as exc:
        raise http_error(exc) from exc


# Category matrix


@app.get("/api/category-matrix/categories")
def api_category_matrix_categories(
    ledger: Optional[Session] = Depends(get_ledger),
    context: SavingsContext = Depends(get_context),
):
    return CategoryMatrixService(ledger, context).categories()


@app.get("/api/category-matrix/data")
def api_category_matrix_data(
    start: Optional[str] = None,
    end: Optional[str] = None,
    months: Optional[int] = None,
    ledger: Optional[Session] = Depends(get_ledger),
    context: SavingsContext = Depends(get_context),
):
    try:
        span = resolve_month_span(months, start, end)
    except ValueError as exc:
        raise http_error(exc) from exc
    return CategoryMatrixService(ledger, context).matrix(span)


# Manual transactions


@app.get("/api/manual-transactions")
def api_manual_transactions(
    projectId: Optional[int] = None,
    month: Optional[str] = None,
    db: Session = Depends(get_db),
):
    try:
        items = ManualTransactionService(db).list(projectId, month)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [manual_transaction_out(txn) for txn in items]


@app.post("/api/manual-transactions", status_code=201)
def api_create_manual_transaction(
    data: ManualTransactionIn, db: Session = Depends(get_db)
):
    try:
        txn = ManualTransactionService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return manual_transaction_out(txn)


@app.delete("/api/manual-transactions/{transaction_id}", status_code=204)
def api_delete_manual_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        ManualTransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)
