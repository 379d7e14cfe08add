import pytest
from sqlalchemy import func, select

from propass import models
from propass.codes import CodeRegistry, default_registry, grant_id_for
from propass.errors import InvalidCode
from propass.redemption import normalize_code, validate


def test_builtin_code_resolves_to_pro_grant():
    grant = validate("FREEPRO2024")
    assert grant.code == "FREEPRO2024"
    assert grant.id == "code:FREEPRO2024"
    assert grant.effect == models.PLAN_PRO


@pytest.mark.parametrize("raw", ["freepro2024", "  FreePro2024 ", "\tFREEPRO2024\n"])
def test_matching_is_case_and_whitespace_insensitive(raw):
    assert validate(raw) == validate("FREEPRO2024")


@pytest.mark.parametrize("raw", [None, "", "   ", 2024, "WRONGCODE", "FREEPRO 2024"])
def test_unusable_codes_are_invalid(raw):
    with pytest.raises(InvalidCode) as excinfo:
        validate(raw)
    assert excinfo.value.message == "Invalid redeem code"
    assert excinfo.value.status_code == 400


def test_normalize_code():
    assert normalize_code(" abc ") == "ABC"
    assert normalize_code(None) == ""
    assert normalize_code(12) == ""


def test_registry_collapses_codes_that_differ_only_by_case():
    registry = CodeRegistry({"Promo": "pro", "PROMO": "pro", " ": "pro"})
    assert len(registry) == 1
    assert "PROMO" in registry
    assert validate("promo", registry).id == grant_id_for("Promo")


def test_extra_codes_from_environment(monkeypatch):
    monkeypatch.setenv("REDEEM_CODES", "launch-week, partner42 ,")
    registry = default_registry()
    assert set(registry.codes()) == {"FREEPRO2024", "LAUNCH-WEEK", "PARTNER42"}
    assert validate("Partner42").effect == models.PLAN_PRO


def test_validate_is_deterministic_and_leaves_store_untouched(db_session):
    from propass.auth.accounts import create_user

    user = create_user(db_session, email="reader@example.com")

    def snapshot():
        grants = db_session.execute(select(func.count(models.AppliedGrant.id))).scalar_one()
        db_session.expire_all()
        return grants, db_session.get(models.User, user.id).plan

    before = snapshot()
    results = [validate("freepro2024") for _ in range(5)]
    assert all(result == results[0] for result in results)
    for _ in range(3):
        with pytest.raises(InvalidCode):
            validate("WRONGCODE")
    assert snapshot() == before == (0, models.PLAN_FREE)
