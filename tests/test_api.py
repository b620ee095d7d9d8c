from fastapi.testclient import TestClient

import pytest

from main import app, get_db, get_ledger
from models import AccountPreference

from conftest import LedgerBuilder, make_ledger_session, make_session


@pytest.fixture
def api():
    db = make_session()
    ledger = make_ledger_session()
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_ledger] = lambda: ledger
    try:
        yield TestClient(app), db, LedgerBuilder(ledger)
    finally:
        app.dependency_overrides.clear()
        db.close()
        ledger.close()


@pytest.fixture
def no_ledger():
    db = make_session()
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_ledger] = lambda: None
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        db.close()


def create_project(client, **payload):
    body = {
        "name": "Japon",
        "startDate": "2024-01-01",
        "endDate": "2024-06-30",
        "plannedBudget": 6000,
    }
    body.update(payload)
    resp = client.post("/api/projects", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health_reports_missing_ledger(no_ledger) -> None:
    resp = no_ledger.get("/api/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "ledger": False}


def test_reads_without_ledger_return_empty_results(no_ledger) -> None:
    project = create_project(no_ledger)

    months = no_ledger.get("/api/monthly-savings", params={"targetMonth": "2024-04", "months": 2})
    accounts = no_ledger.get("/api/accounts")
    categories = no_ledger.get("/api/category-matrix/categories")
    transactions = no_ledger.get(f"/api/projects/{project['id']}/transactions")

    assert [row["month"] for row in months.json()] == ["2024-03", "2024-04"]
    assert all(row["totalSavings"] == 0 for row in months.json())
    assert all(row["savingsBalance"] is None for row in months.json())
    assert accounts.json() == []
    assert categories.json() == []
    assert transactions.json() == []


def test_project_crud(api) -> None:
    client, _, _ = api
    project = create_project(client)

    listed = client.get("/api/projects").json()
    patched = client.patch(
        f"/api/projects/{project['id']}", json={"plannedBudget": "7 200", "ledgerTag": "JP"}
    )
    duplicate = client.post("/api/projects", json={"name": "Japon"})
    missing = client.patch("/api/projects/999", json={"name": "x"})
    deleted = client.delete(f"/api/projects/{project['id']}")

    assert listed[0]["name"] == "Japon"
    assert listed[0]["currentSavings"] == 0
    assert patched.json()["plannedBudget"] == 7200.0
    assert patched.json()["ledgerTag"] == "JP"
    assert duplicate.status_code == 400
    assert missing.status_code == 404
    assert deleted.status_code == 204
    assert client.get("/api/projects").json() == []


def test_allocations_put_and_get(api) -> None:
    client, _, _ = api
    project = create_project(client)

    resp = client.put(
        "/api/project-allocations/2024-04",
        json={"allocations": [{"projectId": project["id"], "amount": 500}], "freeSavings": 20},
    )
    fetched = client.get("/api/project-allocations/2024-04").json()
    mirrors = client.get("/api/manual-transactions", params={"month": "2024-04"}).json()

    assert resp.status_code == 200
    assert fetched["allocations"][0]["allocatedAmount"] == 500.0
    assert fetched["allocations"][0]["projectName"] == "Japon"
    assert fetched["freeSavings"] == 20.0
    assert sorted(m["source"] for m in mirrors) == ["allocation", "allocation"]

    client.put(
        "/api/project-allocations/2024-04",
        json={"allocations": [{"projectId": project["id"], "amount": 0}], "freeSavings": 0},
    )
    assert client.get("/api/project-allocations/2024-04").json()["allocations"] == []
    assert client.get("/api/manual-transactions").json() == []


def test_allocations_errors(api) -> None:
    client, _, _ = api

    bad_month = client.put("/api/project-allocations/2024-4", json={"allocations": []})
    unknown = client.put(
        "/api/project-allocations/2024-04",
        json={"allocations": [{"projectId": 42, "amount": 10}]},
    )
    invalid = client.put("/api/project-allocations/2024-04", json={"allocations": "nope"})

    assert bad_month.status_code == 400
    assert unknown.status_code == 404
    assert invalid.status_code == 422


def test_goal_endpoints(api) -> None:
    client, _, _ = api
    project = create_project(
        client, startDate="2020-01-01", endDate="2099-12-31", plannedBudget=0
    )
    pid = project["id"]
    client.patch(f"/api/projects/{pid}", json={"plannedBudget": 6000})

    created = client.post(
        "/api/saving-goals",
        json={"projectId": pid, "amount": 100, "startDate": "2020-01-01"},
    )
    history = client.get(f"/api/saving-goals/project/{pid}").json()
    current = client.get(f"/api/saving-goals/project/{pid}/current", params={"month": "2021-05"})
    suggestion = client.post(f"/api/saving-goals/project/{pid}/suggest", params={"month": "2024-03"})
    suggestion_get = client.get(f"/api/saving-goals/project/{pid}/suggest", params={"month": "2024-03"})
    month = client.get(f"/api/saving-goals/project/{pid}/month/2021-05")
    overlap = client.post(
        "/api/saving-goals",
        json={"projectId": pid, "amount": 50, "startDate": "2019-06-01"},
    )

    assert created.status_code == 201
    assert [g["startDate"] for g in history] == ["2020-01-01"]
    assert current.json()["amount"] == 100.0
    assert suggestion.status_code == 200
    assert suggestion.json() == suggestion_get.json()
    assert suggestion.json()["currentGoal"] == 100.0
    assert month.json()["status"] == "under"
    assert overlap.status_code == 400


def test_accept_and_insufficient_data(api) -> None:
    client, _, _ = api
    project = create_project(client)
    bare = create_project(client, name="Sans dates", startDate=None, endDate=None)

    accepted = client.post(
        f"/api/saving-goals/project/{project['id']}/accept",
        json={"newAmount": 1249.2, "reason": "auto-adjust (behind)"},
    )
    legacy_field = client.post(
        f"/api/saving-goals/project/{project['id']}/accept", json={"amount": 10}
    )
    insufficient = client.get(f"/api/saving-goals/project/{bare['id']}/suggest")
    missing = client.get("/api/saving-goals/project/999/suggest")

    assert accepted.json()["ok"] is True
    assert accepted.json()["goal"]["amount"] == 1250.0
    assert accepted.json()["goal"]["endDate"] is None
    assert accepted.json()["goal"]["reason"] == "auto-adjust (behind)"
    assert legacy_field.status_code == 422
    assert insufficient.status_code == 400
    assert missing.status_code == 404


def test_account_preferences_and_accounts(api) -> None:
    client, db, builder = api
    checking = builder.account("Compte courant", "ICAccountType.Checking")
    livret = builder.account("Livret A", "ICAccountType.Savings")
    builder.split(livret, "2024-04-02", 1500.0)

    refreshed = client.post("/api/account-preferences/refresh").json()
    saved = client.post(
        "/api/account-preferences",
        json={"accountId": checking, "accountName": "Compte courant", "includeSavings": True},
    )
    savings_accounts = client.get("/api/accounts", params={"filter": "savings"}).json()
    bad_filter = client.get("/api/accounts", params={"filter": "nope"})

    assert {p["accountId"] for p in refreshed} == {checking, livret}
    assert saved.json()["includeChecking"] is False
    assert db.get(AccountPreference, checking).include_savings is True
    assert {a["id"] for a in savings_accounts} == {checking, livret}
    assert bad_filter.status_code == 400


def test_monthly_manual_savings_endpoints(api) -> None:
    client, _, _ = api

    put = client.put("/api/monthly-manual-savings/2024-04", json={"amount": "80,5"})
    one = client.get("/api/monthly-manual-savings/2024-04")
    listed = client.get("/api/monthly-manual-savings")
    negative = client.put("/api/monthly-manual-savings/2024-04", json={"amount": -1})

    assert put.json() == {"month": "2024-04", "amount": 80.5}
    assert one.json() == {"month": "2024-04", "amount": 80.5}
    assert listed.json() == [{"month": "2024-04", "amount": 80.5}]
    assert negative.status_code == 400


def test_manual_transactions_endpoints(api) -> None:
    client, _, _ = api
    project = create_project(client)

    created = client.post(
        "/api/manual-transactions",
        json={
            "date": "2024-04-12",
            "description": "VIR Epargne avril 2024 - Japon",
            "amount": 75,
            "projectId": project["id"],
        },
    )
    expense = client.post(
        "/api/manual-transactions",
        json={"date": "2024-04-13", "description": "Retrait", "amount": 10, "type": "expense"},
    )
    listed = client.get("/api/manual-transactions", params={"projectId": project["id"]})
    deleted = client.delete(f"/api/manual-transactions/{created.json()['id']}")

    assert created.status_code == 201
    assert expense.json()["amount"] == -10.0
    assert [t["description"] for t in listed.json()] == ["VIR Epargne avril 2024 - Japon"]
    assert deleted.status_code == 204
    assert client.delete("/api/manual-transactions/999").status_code == 404


def test_monthly_savings_range_validation(api) -> None:
    client, _, _ = api

    ok = client.get("/api/monthly-savings", params={"start": "2024-01", "end": "2024-03"})
    reversed_range = client.get("/api/monthly-savings", params={"start": "2024-05", "end": "2024-03"})
    half_range = client.get("/api/monthly-savings", params={"start": "2024-05"})

    assert [r["label"] for r in ok.json()] == ["janvier 2024", "février 2024", "mars 2024"]
    assert reversed_range.status_code == 400
    assert half_range.status_code == 400
