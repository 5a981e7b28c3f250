"""
Tests for error handling: structured error responses, HTTP status codes,
and the custom exception classes.
"""
from datetime import timedelta

from app.core.errors import (
    ActionAlreadyUndoneError,
    DimensionMismatchError,
    DoubleFinalizeError,
    InvalidTransitionError,
    JobAlreadyRunningError,
    ProposalAlreadyReviewedError,
    ProposalExpiredError,
    UnsupportedEffectError,
)
from app.models.job_lock import JobLock
from app.services.learning_job import JOB_NAME
from app.services.policy_store import PolicyStore
from app.services.proposals import ProposalDraft, ProposalGovernor


# ---------------------------------------------------------------------------
# Unit tests on exception classes
# ---------------------------------------------------------------------------

class TestExceptionClasses:
    def test_dimension_mismatch_error(self):
        err = DimensionMismatchError(expected=10, received=3)
        assert err.http_status == 422
        assert err.code == "DIMENSION_MISMATCH"
        assert "10" in err.message
        assert "3" in err.message
        d = err.to_dict()
        assert d["details"] == {"expected": 10, "received": 3}

    def test_transition_errors_are_conflicts(self):
        for err in (
            ProposalAlreadyReviewedError(1, "accepted"),
            ProposalExpiredError(1),
            ActionAlreadyUndoneError(1),
        ):
            assert isinstance(err, InvalidTransitionError)
            assert err.http_status == 409

    def test_already_reviewed_carries_status(self):
        err = ProposalAlreadyReviewedError(7, "rejected")
        assert err.code == "PROPOSAL_ALREADY_REVIEWED"
        assert err.details == {"id": 7, "status": "rejected"}

    def test_double_finalize_error(self):
        err = DoubleFinalizeError(42)
        assert err.http_status == 409
        assert err.code == "DOUBLE_FINALIZE"

    def test_job_already_running(self):
        err = JobAlreadyRunningError("nightly_learning")
        assert err.http_status == 409
        assert err.details["job"] == "nightly_learning"

    def test_to_dict_always_has_code_and_message(self):
        d = UnsupportedEffectError("teleport").to_dict()
        assert d["code"] == "UNSUPPORTED_EFFECT"
        assert "teleport" in d["message"]
        assert d["details"]["op"] == "teleport"


# ---------------------------------------------------------------------------
# Integration tests on HTTP error responses
# ---------------------------------------------------------------------------

class TestValidationErrors:
    def test_empty_user_id(self, client):
        r = client.post("/sage/decide", json={"user_id": ""})
        assert r.status_code == 422
        body = r.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert isinstance(body["details"]["errors"], list)
        assert body["details"]["errors"][0]["field"] == "user_id"

    def test_empty_context_vector(self, client):
        r = client.post("/sage/decide", json={"user_id": "u-err", "context_vector": []})
        assert r.status_code == 422
        assert r.json()["code"] == "VALIDATION_ERROR"

    def test_non_finite_context_vector(self, client, consent):
        consent.grant("u-err")
        for literal in ("NaN", "Infinity", "-Infinity"):
            r = client.post(
                "/sage/decide",
                content='{"user_id": "u-err", "context_vector": [' + literal + ', 1.0]}',
                headers={"content-type": "application/json"},
            )
            assert r.status_code == 422
            body = r.json()
            assert body["code"] == "VALIDATION_ERROR"
            assert body["details"]["errors"][0]["field"] == "context_vector.0"

    def test_non_positive_time_budget(self, client):
        r = client.post("/learning/run", json={"time_budget_seconds": 0})
        assert r.status_code == 422

    def test_unknown_status_filter(self, client):
        r = client.get("/proposals", params={"status": "maybe"})
        assert r.status_code == 422


class TestDomainErrors:
    def test_dimension_mismatch(self, client, db, consent):
        consent.grant("u-err")
        PolicyStore(db).upsert_weights("u-err", "nudge", [0.1, 0.2, 0.3])
        db.commit()

        r = client.post("/sage/decide", json={"user_id": "u-err", "context_vector": [0.5, 0.5]})

        assert r.status_code == 422
        body = r.json()
        assert body["code"] == "DIMENSION_MISMATCH"
        assert body["details"] == {"expected": 3, "received": 2}

    def test_unknown_proposal(self, client):
        r = client.post("/proposals/99999/approve")
        assert r.status_code == 404
        assert r.json()["code"] == "PROPOSAL_NOT_FOUND"

    def test_unknown_action(self, client):
        r = client.post("/actions/99999/undo")
        assert r.status_code == 404
        assert r.json()["code"] == "ACTION_NOT_FOUND"

    def test_second_approval_is_conflict(self, client, db):
        proposal = ProposalGovernor(db).generate(ProposalDraft(
            user_id="u-err", run_id="run-err", type="suggestion", title="t",
            proposed_actions=[{"op": "acknowledge"}],
        ))
        db.commit()

        assert client.post(f"/proposals/{proposal.id}/approve").status_code == 200
        r = client.post(f"/proposals/{proposal.id}/approve")

        assert r.status_code == 409
        body = r.json()
        assert body["code"] == "PROPOSAL_ALREADY_REVIEWED"
        assert body["details"]["status"] == "accepted"

    def test_unknown_consent_purpose(self, client):
        r = client.put("/consents/u-err", json={"purpose": "telepathy", "granted": True})
        assert r.status_code == 422
        assert r.json()["code"] == "UNKNOWN_CONSENT_PURPOSE"

    def test_job_already_running(self, client, db, now):
        db.add(JobLock(name=JOB_NAME, owner="other", acquired_at=now - timedelta(minutes=1)))
        db.commit()

        r = client.post("/learning/run")

        assert r.status_code == 409
        assert r.json()["code"] == "JOB_ALREADY_RUNNING"
