import pytest

from models import AccountPreference
from schemas import AccountPreferenceIn
from services import AccountClassification, AccountService


def test_classification_is_opt_in(session, ledger, builder) -> None:
    checking = builder.account("Compte courant", "ICAccountType.Checking")
    livret = builder.account("Livret A", "ICAccountType.Savings")
    builder.account("Carte", "ICAccountType.CreditCard")
    session.add(
        AccountPreference(account_id=checking, account_name="Compte courant", include_checking=True)
    )
    session.commit()

    result = AccountService(session, ledger).classify()

    assert result.checking_ids == frozenset({checking})
    assert result.savings_ids == frozenset()
    assert livret not in result.savings_ids


def test_savings_typed_accounts_promoted_without_preferences(session, ledger, builder) -> None:
    builder.account("Compte courant", "ICAccountType.Checking")
    livret = builder.account("Livret A", "ICAccountType.Savings")

    result = AccountService(session, ledger).classify()

    assert result == AccountClassification(savings_ids=frozenset({livret}))


def test_classification_tolerates_missing_or_empty_ledger(session, ledger) -> None:
    assert AccountService(session, None).classify() == AccountClassification()
    assert AccountService(session, ledger).classify() == AccountClassification()
    assert AccountService(session, None).list_accounts() == []


def test_refresh_creates_defaults_and_keeps_user_flags(session, ledger, builder) -> None:
    checking = builder.account("Compte courant", "ICAccountType.Checking")
    livret = builder.account("Livret A", "ICAccountType.Savings")
    pea = builder.account("PEA", "ICAccountType.Investment")
    builder.account("Ancien compte", "ICAccountType.Checking", hidden=1)
    session.add(
        AccountPreference(
            account_id=livret,
            account_name="Old name",
            include_savings=False,
            include_checking=True,
        )
    )
    session.commit()

    prefs = {p.account_id: p for p in AccountService(session, ledger).refresh_preferences()}

    assert set(prefs) == {checking, livret, pea}
    assert prefs[checking].include_checking and not prefs[checking].include_savings
    assert prefs[pea].include_checking is False and prefs[pea].include_savings is False
    assert prefs[livret].account_name == "Livret A"
    assert prefs[livret].include_checking is True
    assert prefs[livret].include_savings is False


def test_save_all_preferences_is_atomic(session) -> None:
    service = AccountService(session, None)
    service.save_preference(
        AccountPreferenceIn(account_id="A1", account_name="Courant", include_checking=True)
    )

    with pytest.raises(ValueError, match="Duplicate"):
        service.save_all_preferences(
            [
                AccountPreferenceIn(account_id="A1", account_name="Courant"),
                AccountPreferenceIn(account_id="A1", account_name="Courant bis"),
            ]
        )

    prefs = service.list_preferences()
    assert [(p.account_id, p.include_checking) for p in prefs] == [("A1", True)]


def test_list_accounts_reports_balance_type_and_filter(session, ledger, builder) -> None:
    checking = builder.account("Compte courant", "ICAccountType.Checking")
    livret = builder.account("Livret A", "ICAccountType.Savings")
    builder.account("Caché", "ICAccountType.Checking", hidden=1)
    builder.split(checking, "2024-04-01", 1200.0)
    builder.split(checking, "2024-04-02", -200.5)
    builder.split(livret, "2024-04-03", 3000.0)
    session.add_all(
        [
            AccountPreference(account_id=checking, account_name="Compte courant", include_checking=True),
            AccountPreference(account_id=livret, account_name="Livret A", include_savings=True),
        ]
    )
    session.commit()
    service = AccountService(session, ledger)

    everything = {a["name"]: a for a in service.list_accounts()}
    savings_only = service.list_accounts("savings")

    assert set(everything) == {"Compte courant", "Livret A"}
    assert everything["Compte courant"]["balance"] == 999.5
    assert everything["Compte courant"]["displayType"] == "Chèques"
    assert everything["Livret A"]["displayType"] == "Épargne"
    assert [a["id"] for a in savings_only] == [livret]


def test_list_accounts_rejects_unknown_filter(session, ledger) -> None:
    with pytest.raises(ValueError, match="filter"):
        AccountService(session, ledger).list_accounts("credit")
