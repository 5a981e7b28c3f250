"""
Integration tests for API endpoints using a SQLite test DB.
"""
from datetime import timedelta

from app.core.clock import utcnow
from app.main import app
from app.models.behavioral_profile import BehavioralProfileSnapshot
from app.models.experience import Experience
from app.models.feedback import FeedbackSignal
from app.routers.decisions import get_now
from app.services.policy_store import PolicyStore
from app.services.proposals import ProposalDraft, ProposalGovernor


def _proposal(db, user="u-api", run_id="run-api", specs=None, now=None):
    proposal = ProposalGovernor(db).generate(
        ProposalDraft(
            user_id=user, run_id=run_id, type="suggestion", title="Plan one focused task",
            proposed_actions=specs or [{"op": "create_task", "title": "Focus block", "due_in_days": 0}],
        ),
        now=now,
    )
    db.commit()
    return proposal


class TestHealth:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"


class TestConsents:
    def test_defaults_to_nothing_granted(self, client):
        r = client.get("/consents/u-api")
        assert r.status_code == 200
        body = r.json()
        assert body["ai_profiling"] is False
        assert body["learning_enabled"] is False

    def test_grant_both_enables_learning(self, client):
        client.put("/consents/u-api", json={"purpose": "ai_profiling", "granted": True})
        r = client.put("/consents/u-api", json={"purpose": "policy_learning", "granted": True})
        assert r.status_code == 200
        assert r.json()["learning_enabled"] is True

        r = client.put("/consents/u-api", json={"purpose": "policy_learning", "granted": False})
        assert r.json()["learning_enabled"] is False
        assert r.json()["ai_profiling"] is True


class TestDecide:
    def test_consent_denied(self, client, db):
        r = client.post("/sage/decide", json={"user_id": "u-api"})
        assert r.status_code == 200
        body = r.json()
        assert body["outcome"] == "consent_denied"
        assert body["action"] == "silent"
        assert body["run_id"] is None
        assert db.query(Experience).count() == 0

    def test_decision_recorded(self, client, db, consent):
        consent.grant("u-api")
        r = client.post("/sage/decide", json={"user_id": "u-api", "context_vector": [0.3, 0.7]})
        assert r.status_code == 200
        body = r.json()
        assert body["outcome"] == "decided"
        assert body["run_id"]
        assert body["context_vector"] == [0.3, 0.7]

        exp = db.get(Experience, body["experience_id"])
        assert exp.run_id == body["run_id"]
        assert exp.action_type == body["action"]

    def test_quiet_hours_are_safety_blocked(self, client, db, consent, now):
        consent.grant("u-api")
        app.dependency_overrides[get_now] = lambda: now.replace(hour=23)

        r = client.post("/sage/decide", json={"user_id": "u-api", "context_vector": [0.3, 0.7]})

        assert r.status_code == 200
        body = r.json()
        assert body["outcome"] == "safety_blocked"
        assert body["action"] == "silent"
        assert body["reasoning"] == "quiet_hours"
        assert db.query(Experience).count() == 0

    def test_decision_with_proposal(self, client, db, consent):
        consent.grant("u-api")
        PolicyStore(db).upsert_weights("u-api", "suggest_break", [4.0, 4.0])
        db.commit()

        body = client.post(
            "/sage/decide", json={"user_id": "u-api", "context_vector": [1.0, 1.0]}
        ).json()

        # exploration can pick any action; only effectful ones get a proposal
        if body["action"] == "suggest_break":
            listed = client.get("/proposals", params={"user_id": "u-api"}).json()
            assert listed["total"] == 1
            assert listed["items"][0]["run_id"] == body["run_id"]
            assert listed["items"][0]["id"] == body["proposal_id"]


class TestProposals:
    def test_list_filters(self, client, db):
        _proposal(db, run_id="r1")
        _proposal(db, user="u-other", run_id="r2")

        r = client.get("/proposals", params={"user_id": "u-api", "status": "pending"})
        assert r.status_code == 200
        body = r.json()
        assert body["total"] == 1
        assert body["items"][0]["status"] == "pending"
        assert body["items"][0]["expires_at"].endswith(("Z", "+00:00"))

    def test_approve_then_undo(self, client, db):
        p = _proposal(db)

        r = client.post(f"/proposals/{p.id}/approve")
        assert r.status_code == 200
        body = r.json()
        assert body["result"] == "accepted"
        assert body["run_id"] == "run-api"
        assert body["action"]["effects"][0]["op"] == "create_task"

        r = client.post(f"/actions/{body['action_id']}/undo")
        assert r.status_code == 200
        assert r.json()["result"] == "undone"
        assert r.json()["details"] == {"restored": 1}

        r = client.post(f"/actions/{body['action_id']}/undo")
        assert r.status_code == 409
        assert r.json()["code"] == "ACTION_ALREADY_UNDONE"

    def test_reject_with_reason(self, client, db):
        p = _proposal(db)
        r = client.post(f"/proposals/{p.id}/reject", json={"reason": "busy"})
        assert r.status_code == 200
        assert r.json()["result"] == "rejected"

        listed = client.get("/proposals", params={"status": "rejected"}).json()
        assert listed["items"][0]["rejection_reason"] == "busy"

    def test_reject_without_body(self, client, db):
        p = _proposal(db)
        assert client.post(f"/proposals/{p.id}/reject").status_code == 200

    def test_expired_proposal(self, client, db):
        p = _proposal(db, now=utcnow() - timedelta(hours=49))

        r = client.post(f"/proposals/{p.id}/approve")

        assert r.status_code == 409
        assert r.json()["code"] == "PROPOSAL_EXPIRED"
        listed = client.get("/proposals", params={"status": "expired"}).json()
        assert listed["total"] == 1
        signals = db.query(FeedbackSignal).filter(FeedbackSignal.run_id == "run-api").all()
        assert [s.signal for s in signals] == ["ignored"]

    def test_expire_endpoint(self, client, db):
        _proposal(db, now=utcnow() - timedelta(hours=49))
        _proposal(db, run_id="run-fresh")

        r = client.post("/proposals/expire")
        assert r.status_code == 200
        assert r.json() == {"expired": 1}


class TestLearning:
    def test_run_and_list(self, client):
        r = client.post("/learning/run", json={"batch_limit": 10})
        assert r.status_code == 200
        body = r.json()
        assert body["success"] is True
        assert body["processed"] == 0

        runs = client.get("/learning/runs").json()
        assert runs["total"] == 1
        assert runs["items"][0]["run_id"] == body["run_id"]
        assert runs["items"][0]["trigger"] == "manual"

    def test_stats(self, client, db, consent):
        consent.grant("u-api")
        client.post("/sage/decide", json={"user_id": "u-api", "context_vector": [0.3, 0.7]})

        r = client.get("/learning/stats/u-api")
        assert r.status_code == 200
        body = r.json()
        assert body["total_experiences"] == 1
        assert body["processed_experiences"] == 0
        assert sum(body["action_distribution"].values()) == 1
        assert body["replay_value"] == 0.0
        assert body["replay_regret"] == 0.0


class TestProfile:
    def test_null_without_consent(self, client):
        r = client.get("/profile/u-api")
        assert r.status_code == 200
        assert r.json() == {"user_id": "u-api", "profile": None}

    def test_profile_with_consent(self, client, db, consent):
        consent.grant("u-api")
        r = client.get("/profile/u-api")
        assert r.status_code == 200
        profile = r.json()["profile"]
        assert profile["user_id"] == "u-api"
        assert "version" not in profile
        assert set(profile) >= {"chronotype", "discipline", "dropout_signals", "predictions"}
        assert client.get("/profile/u-api").json()["profile"]["user_id"] == "u-api"
        assert db.query(BehavioralProfileSnapshot).filter_by(user_id="u-api").one().version == 2
