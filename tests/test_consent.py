"""
Tests for the consent oracle and the SQL consent store.
"""
import pytest

from app.core.errors import UnknownConsentPurposeError
from app.models.audit_log import AuditLog
from app.models.consent import UserConsent
from app.services.consent import ConsentOracle, ConsentSnapshot, SqlConsentStore


class _ListStore:
    def __init__(self, records):
        self.records = records
        self.calls = 0

    def get_consents(self, user_id):
        self.calls += 1
        return self.records


class _BrokenStore:
    def get_consents(self, user_id):
        raise RuntimeError("consent service unreachable")


class TestConsentOracle:
    def test_missing_purposes_default_to_false(self):
        snap = ConsentOracle(_ListStore([])).snapshot("u1")
        assert snap == ConsentSnapshot()
        assert snap.learning_enabled is False

    def test_learning_needs_both_purposes(self):
        only_profiling = _ListStore([{"purpose": "ai_profiling", "granted": True}])
        assert ConsentOracle(only_profiling).learning_enabled("u1") is False

        both = _ListStore([
            {"purpose": "ai_profiling", "granted": True},
            {"purpose": "policy_learning", "granted": True},
        ])
        assert ConsentOracle(both).learning_enabled("u1") is True

    def test_unknown_purposes_ignored(self):
        store = _ListStore([{"purpose": "marketing", "granted": True}])
        assert ConsentOracle(store).snapshot("u1").to_dict() == {
            "ai_profiling": False,
            "policy_learning": False,
            "behavioral_tracking": False,
            "data_export": False,
        }

    def test_fails_closed(self):
        oracle = ConsentOracle(_BrokenStore())
        assert oracle.snapshot("u1") == ConsentSnapshot()
        assert oracle.learning_enabled("u1") is False

    def test_not_cached(self):
        store = _ListStore([
            {"purpose": "ai_profiling", "granted": True},
            {"purpose": "policy_learning", "granted": True},
        ])
        oracle = ConsentOracle(store)
        assert oracle.learning_enabled("u1") is True
        store.records = [{"purpose": "ai_profiling", "granted": True}]
        assert oracle.learning_enabled("u1") is False
        assert store.calls == 2


class TestSqlConsentStore:
    def test_grant_then_withdraw(self, db):
        store = SqlConsentStore(db)
        oracle = ConsentOracle(store)

        store.set_consent("u-sql", "ai_profiling", True)
        store.set_consent("u-sql", "policy_learning", True)
        db.commit()
        assert oracle.learning_enabled("u-sql") is True

        store.set_consent("u-sql", "policy_learning", False)
        db.commit()
        assert oracle.learning_enabled("u-sql") is False

        row = (
            db.query(UserConsent)
            .filter(UserConsent.user_id == "u-sql", UserConsent.purpose == "policy_learning")
            .one()
        )
        assert row.granted is False
        assert row.withdrawn_at is not None

    def test_changes_are_audited(self, db):
        store = SqlConsentStore(db)
        store.set_consent("u-audit", "ai_profiling", True)
        store.set_consent("u-audit", "ai_profiling", False)
        db.commit()

        actions = [
            a.action for a in
            db.query(AuditLog).filter(AuditLog.user_id == "u-audit").order_by(AuditLog.id)
        ]
        assert actions == ["consent_granted", "consent_withdrawn"]

    def test_unknown_purpose_rejected(self, db):
        with pytest.raises(UnknownConsentPurposeError) as exc:
            SqlConsentStore(db).set_consent("u1", "marketing", True)
        assert exc.value.http_status == 422
        assert db.query(UserConsent).count() == 0
