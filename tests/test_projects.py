from datetime import date

import pytest
from sqlalchemy import func, select

from models import (
    AccountPreference,
    ManualTransaction,
    MonthlyManualSaving,
    Project,
    ProjectAllocation,
    ProjectSavingGoal,
    TransactionSource,
)
from periods import MonthSpan
from schemas import AllocationIn, ProjectIn, ProjectUpdate
from services import (
    AllocationService,
    CategoryMatrixService,
    MonthlyManualSavingsService,
    MonthlySavingsService,
    NotFoundError,
    ProjectService,
    build_context,
)

from conftest import make_settings


def test_create_project_writes_initial_goal(session) -> None:
    service = ProjectService(session)

    project = service.create(
        ProjectIn(
            name=" Japon ",
            start_date=date(2024, 1, 10),
            end_date=date(2024, 6, 30),
            planned_budget="6000",
        ),
        today=date(2024, 3, 5),
    )

    goal = session.scalar(select(ProjectSavingGoal))
    assert project.name == "Japon"
    assert project.planned_budget_cents == 600000
    assert goal.start_date == date(2024, 3, 1)
    assert goal.end_date is None
    assert goal.amount_cents == 150000


def test_create_project_without_goal_when_incomplete_or_finished(session) -> None:
    service = ProjectService(session)
    service.create(ProjectIn(name="Idée"), today=date(2024, 3, 5))
    service.create(
        ProjectIn(
            name="Fini",
            start_date=date(2023, 1, 1),
            end_date=date(2023, 12, 31),
            planned_budget="1000",
        ),
        today=date(2024, 3, 5),
    )

    assert session.scalar(select(func.count(ProjectSavingGoal.id))) == 0


def test_create_project_validation(session) -> None:
    service = ProjectService(session)
    service.create(ProjectIn(name="Japon"))

    with pytest.raises(ValueError, match="already exists"):
        service.create(ProjectIn(name="japon"))
    with pytest.raises(ValueError, match="End date"):
        service.create(
            ProjectIn(name="Vélo", start_date=date(2024, 5, 1), end_date=date(2024, 4, 1))
        )
    with pytest.raises(ValueError, match="positive"):
        service.create(ProjectIn(name="Vélo", planned_budget="-5"))


def test_update_and_archive_project(session) -> None:
    service = ProjectService(session)
    project = service.create(ProjectIn(name="Japon"))

    service.update(
        project.id,
        ProjectUpdate(planned_budget="1 250,50", archived=True, ledger_tag=" Voyage Japon "),
    )

    assert project.planned_budget_cents == 125050
    assert project.ledger_key == "Voyage Japon"
    assert service.list_all() == []
    assert [p.id for p in service.list_all(include_archived=True)] == [project.id]
    with pytest.raises(NotFoundError):
        service.update(999, ProjectUpdate(name="x"))


def test_delete_project_cascades(session) -> None:
    service = ProjectService(session)
    project = service.create(
        ProjectIn(
            name="Japon",
            start_date=date(2024, 1, 1),
            end_date=date(2024, 6, 30),
            planned_budget="6000",
        ),
        today=date(2024, 1, 2),
    )
    AllocationService(session).save(
        "2024-04", [AllocationIn(project_id=project.id, amount="500")], "100"
    )

    service.delete(project.id)

    assert session.scalar(select(func.count(ProjectAllocation.id))) == 0
    assert session.scalar(select(func.count(ProjectSavingGoal.id))) == 0
    remaining = session.scalars(select(ManualTransaction)).all()
    assert [m.project_id for m in remaining] == [None]


def test_sync_and_auto_map_from_ledger(session, ledger, builder) -> None:
    checking = builder.account("Compte courant")
    builder.split(checking, "2024-04-01", -10.0, project="Vacances Japon")
    builder.split(checking, "2024-04-02", -10.0, project=" Vacances Japon ")
    builder.split(checking, "2024-04-03", -10.0, project="Voiture")
    builder.split(checking, "2024-04-04", -10.0, project="")
    service = ProjectService(session, ledger, build_context(session, ledger, make_settings()))
    service.create(ProjectIn(name="voiture"))
    mapped_target = service.create(ProjectIn(name="Vacance Japon"))
    unrelated = service.create(ProjectIn(name="Piscine"))

    mapped = service.auto_map()

    assert [(m["projectId"], m["ledgerTag"]) for m in mapped] == [
        (mapped_target.id, "Vacances Japon"),
        (session.scalar(select(Project.id).where(Project.name == "voiture")), "Voiture"),
    ]
    assert unrelated.ledger_tag is None

    created = service.sync_from_ledger()
    assert created == []

    builder.split(checking, "2024-04-05", -10.0, project="Cuisine")
    created = service.sync_from_ledger()
    assert [p.name for p in created] == ["Cuisine"]
    assert created[0].ledger_tag == "Cuisine"


def test_list_projects_reports_savings_and_spend(session, ledger, builder) -> None:
    checking = builder.account("Compte courant", "ICAccountType.Checking")
    livret = builder.account("Livret A", "ICAccountType.Savings")
    epargne = builder.category("Virements d'épargne")
    voyages = builder.category("Voyages")
    session.add_all(
        [
            AccountPreference(account_id=checking, account_name="Compte courant", include_checking=True),
            AccountPreference(account_id=livret, account_name="Livret A", include_savings=True),
        ]
    )
    session.commit()
    builder.split(livret, "2024-01-15", 800.0, epargne, project="Japon")
    builder.split(checking, "2024-02-15", -120.0, voyages, project="Japon")
    project = Project(name="Japon", planned_budget_cents=600000)
    session.add(project)
    session.commit()
    service = ProjectService(session, ledger, build_context(session, ledger, make_settings()))

    rows = service.list_with_totals()

    assert rows == [{"project": project, "currentSavings": 800.0, "currentSpent": 120.0}]


def test_monthly_savings_rows(session, ledger, builder) -> None:
    checking = builder.account("Compte courant", "ICAccountType.Checking")
    livret = builder.account("Livret A", "ICAccountType.Savings")
    salaire = builder.category("Salaire")
    courses = builder.category("Courses")
    epargne = builder.category("Virements d'épargne")
    session.add_all(
        [
            AccountPreference(account_id=checking, account_name="Compte courant", include_checking=True),
            AccountPreference(account_id=livret, account_name="Livret A", include_savings=True),
        ]
    )
    japon = Project(name="Japon")
    velo = Project(name="Vélo")
    session.add_all([japon, velo])
    session.commit()
    builder.split(checking, "2024-04-01", 2000.0, salaire)
    builder.split(checking, "2024-04-03", -150.0, courses, project="Japon")
    builder.split(checking, "2024-04-04", -500.0, courses)
    builder.split(livret, "2024-04-28", 300.0, epargne, project="Japon")
    builder.split(livret, "2024-05-28", 1000.0, epargne, project="Vélo")
    AllocationService(session).save(
        "2024-05", [AllocationIn(project_id=velo.id, amount="1200")]
    )
    MonthlyManualSavingsService(session).save("2024-04", "42")
    service = MonthlySavingsService(
        session, ledger, build_context(session, ledger, make_settings())
    )

    rows = service.monthly_savings(MonthSpan("2024-04", "2024-05"))

    assert rows[0] == {
        "month": "2024-04",
        "label": "avril 2024",
        "totalSavings": 1650.0,
        "totalSpent": 150.0,
        "projectBreakdown": {str(japon.id): 300.0},
        "freeSavings": 1350.0,
        "savingsBalance": 300.0,
        "manualSavings": 42.0,
    }
    assert rows[1]["projectBreakdown"] == {str(velo.id): 1200.0}
    assert rows[1]["totalSavings"] == 1000.0
    assert rows[1]["freeSavings"] == 0.0
    assert rows[1]["savingsBalance"] == 1300.0


def test_monthly_manual_savings_mirror(session) -> None:
    service = MonthlyManualSavingsService(session)

    service.save("2024-04", "150")
    service.save("2024-04", "175,25")

    mirror = session.scalar(select(ManualTransaction))
    assert service.get("2024-04") == 17525
    assert mirror.source == TransactionSource.monthly_saving
    assert mirror.amount_cents == 17525
    assert mirror.date == date(2024, 4, 30)
    assert mirror.project_id is None

    service.save("2024-04", "0")

    assert session.scalar(select(func.count(MonthlyManualSaving.id))) == 0
    assert session.scalar(select(func.count(ManualTransaction.id))) == 0
    with pytest.raises(ValueError, match="positive"):
        service.save("2024-04", "-5")


def test_category_matrix_drops_excluded_roots(session, ledger, builder) -> None:
    checking = builder.account("Compte courant", "ICAccountType.Checking")
    session.add(AccountPreference(account_id=checking, account_name="Compte courant", include_checking=True))
    session.commit()
    courses = builder.category("Courses")
    hors_budget = builder.category("Hors budget")
    cadeaux = builder.category("Cadeaux", hors_budget)
    builder.split(checking, "2024-03-02", -40.0, courses)
    builder.split(checking, "2024-04-02", -60.0, courses)
    builder.split(checking, "2024-04-03", -99.0, cadeaux)
    builder.split(checking, "2024-04-04", -5.0)
    service = CategoryMatrixService(ledger, build_context(session, ledger, make_settings()))

    categories = {c["name"]: c for c in service.categories()}
    data = service.matrix(MonthSpan("2024-03", "2024-04"))

    assert categories["Cadeaux"]["rootName"] == "Hors budget"
    assert categories["Cadeaux"]["excluded"] is True
    assert categories["Courses"]["excluded"] is False
    assert data["months"] == ["2024-03", "2024-04"]
    assert [(r["name"], r["months"], r["total"]) for r in data["rows"]] == [
        ("Courses", {"2024-03": -40.0, "2024-04": -60.0}, -100.0),
        ("Sans catégorie", {"2024-03": 0.0, "2024-04": -5.0}, -5.0),
    ]
