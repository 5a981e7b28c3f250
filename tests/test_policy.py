"""
Tests for the policy: the bounded updater, action choice and replay, and
the versioned PolicyStore.
"""
import math
import random

import pytest
from sqlalchemy.orm import Session

from app.core.errors import DimensionMismatchError, PolicyWriteConflictError
from app.models.audit_log import AuditLog
from app.models.experience import ACTIONS
from app.models.policy_weights import PolicyWeights
from app.services.policy import ReplayItem, choose_action, evaluate_policy, explain, regret
from app.services.policy_store import PolicyStore
from app.services.policy_updater import update


def _zeros(dim):
    return {a: [0.0] * dim for a in ACTIONS}


# ---------------------------------------------------------------------------
# PolicyUpdater
# ---------------------------------------------------------------------------

class TestPolicyUpdater:
    def test_step_in_context_direction(self):
        new = update([0.0, 0.0], [0.2, 0.5], 1.0, learning_rate=0.1, max_step_norm=1.0, weight_bound=5.0)
        assert new == pytest.approx([0.02, 0.05])

    def test_negative_reward_moves_away(self):
        new = update([0.0, 0.0], [0.2, 0.5], -1.0, learning_rate=0.1, max_step_norm=1.0, weight_bound=5.0)
        assert new == pytest.approx([-0.02, -0.05])

    def test_deterministic(self):
        args = ([0.3, -0.1, 0.7], [0.5, 0.5, 0.1], 1.7)
        assert update(*args) == update(*args)

    def test_step_norm_clipped(self):
        new = update([0.0, 0.0], [3.0, 4.0], 10.0, learning_rate=1.0, max_step_norm=1.0, weight_bound=100.0)
        assert new == pytest.approx([0.6, 0.8])

    def test_huge_context_is_clipped_not_overflowed(self):
        new = update([0.0], [1e200], 1.0, learning_rate=0.05, max_step_norm=1.0, weight_bound=5.0)
        assert new == [1.0]

    def test_huge_context_keeps_direction(self):
        new = update([0.0, 0.0], [1e200, 1e200], 1.0, learning_rate=0.05, max_step_norm=1.0, weight_bound=5.0)
        assert new == pytest.approx([math.sqrt(0.5), math.sqrt(0.5)])

        away = update([0.0, 0.0], [1e300, -1e300], -2.0, learning_rate=1.0, max_step_norm=1.0, weight_bound=5.0)
        assert away == pytest.approx([-math.sqrt(0.5), math.sqrt(0.5)])
        assert all(math.isfinite(w) for w in away)

    def test_weights_clamped(self):
        new = update([4.9, -4.9], [1.0, -1.0], 10.0, learning_rate=1.0, max_step_norm=2.0, weight_bound=5.0)
        assert new == pytest.approx([5.0, -5.0])

    def test_zero_reward_is_identity(self):
        assert update([0.1, 0.2], [1.0, 1.0], 0.0) == pytest.approx([0.1, 0.2])

    def test_dimension_mismatch(self):
        with pytest.raises(DimensionMismatchError) as exc:
            update([0.0, 0.0, 0.0], [0.2, 0.5], 1.0)
        assert exc.value.details == {"expected": 3, "received": 2}

    def test_non_finite_reward(self):
        with pytest.raises(ValueError):
            update([0.0], [1.0], float("nan"))

    def test_non_finite_context(self):
        with pytest.raises(ValueError):
            update([0.0], [float("inf")], 1.0)


# ---------------------------------------------------------------------------
# Action choice
# ---------------------------------------------------------------------------

class TestChooseAction:
    def test_ties_go_to_first_action(self):
        d = choose_action([0.2, 0.5], _zeros(2))
        assert d.action == "nudge"
        assert d.confidence == pytest.approx(1 / len(ACTIONS))
        assert d.reasoning == "no learned preference yet"
        assert d.explored is False

    def test_picks_highest_score(self):
        weights = _zeros(2)
        weights["celebrate"] = [1.0, 0.0]
        weights["protect"] = [0.0, 0.5]
        d = choose_action([1.0, 1.0], weights)
        assert d.action == "celebrate"
        assert d.score == pytest.approx(1.0)
        assert "habits_rate_7d" in d.reasoning

    def test_exploration(self):
        d = choose_action([1.0], _zeros(1), epsilon=1.0, rng=random.Random(7))
        assert d.explored is True
        assert d.action in ACTIONS
        assert d.reasoning == "exploration"

    def test_exploration_reproducible_with_seed(self):
        a = choose_action([1.0], _zeros(1), epsilon=0.5, rng=random.Random(3))
        b = choose_action([1.0], _zeros(1), epsilon=0.5, rng=random.Random(3))
        assert (a.action, a.explored) == (b.action, b.explored)

    def test_dimension_mismatch(self):
        weights = _zeros(2)
        weights["nudge"] = [1.0, 1.0, 1.0]
        with pytest.raises(DimensionMismatchError):
            choose_action([1.0, 1.0], weights)

    def test_explain_orders_by_magnitude(self):
        text = explain([1.0, 1.0, 1.0], [0.1, -0.9, 0.3])
        assert text.startswith("task_overdue_ratio: -0.90")


class TestReplay:
    def test_evaluate_policy_counts_matching_decisions(self):
        weights = _zeros(1)
        weights["celebrate"] = [1.0]
        items = [
            ReplayItem([1.0], "celebrate", 1.0),
            ReplayItem([1.0], "celebrate", 0.5),
            ReplayItem([1.0], "nudge", -1.0),
        ]
        assert evaluate_policy(items, weights) == pytest.approx(0.75)

    def test_evaluate_policy_without_overlap(self):
        assert evaluate_policy([ReplayItem([1.0], "nudge", 1.0)], {"celebrate": [1.0], "nudge": [0.0]}) == 0.0

    def test_regret(self):
        weights = _zeros(1)
        weights["celebrate"] = [2.0]
        items = [ReplayItem([1.0], "nudge", 0.0), ReplayItem([1.0], "celebrate", 0.0)]
        assert regret(items, weights) == pytest.approx(1.0)
        assert regret([], weights) == 0.0


# ---------------------------------------------------------------------------
# PolicyStore
# ---------------------------------------------------------------------------

class TestPolicyStore:
    def test_unseen_key_is_zero_vector(self, db):
        store = PolicyStore(db)
        assert store.get_weights("u-store", "nudge", 3) == [0.0, 0.0, 0.0]
        assert store.get_versioned("u-store", "nudge", 3) == ([0.0, 0.0, 0.0], 0)

    def test_upsert_versions_and_audits(self, db):
        store = PolicyStore(db)
        assert store.upsert_weights("u-store", "nudge", [0.1, 0.2]) == 1
        assert store.upsert_weights("u-store", "nudge", [0.3, 0.4], expected_version=1) == 2
        db.commit()

        assert store.get_versioned("u-store", "nudge", 2) == ([0.3, 0.4], 2)
        audits = (
            db.query(AuditLog)
            .filter(AuditLog.user_id == "u-store", AuditLog.action == "policy_weights_updated")
            .order_by(AuditLog.id)
            .all()
        )
        assert len(audits) == 2
        assert audits[0].old_value is None
        assert audits[1].old_value == {"weights": [0.1, 0.2], "version": 1}
        assert audits[1].new_value == {"weights": [0.3, 0.4], "version": 2}

    def test_stale_version_conflicts(self, db):
        store = PolicyStore(db)
        store.upsert_weights("u-store", "nudge", [0.1])
        store.upsert_weights("u-store", "nudge", [0.2], expected_version=1)
        with pytest.raises(PolicyWriteConflictError):
            store.upsert_weights("u-store", "nudge", [0.9], expected_version=1)
        assert store.get_weights("u-store", "nudge", 1) == [0.2]

    def test_unknown_action(self, db):
        with pytest.raises(ValueError):
            PolicyStore(db).upsert_weights("u-store", "dance", [0.1])

    def test_apply_update_retries_after_concurrent_write(self, db):
        store = PolicyStore(db, cas_retries=3)
        store.upsert_weights("u-cas", "nudge", [1.0])
        db.commit()

        calls = []

        def step(old):
            calls.append(list(old))
            if len(calls) == 1:
                # Another worker writes the same key in between.
                other = Session(bind=db.get_bind())
                try:
                    PolicyStore(other).upsert_weights("u-cas", "nudge", [2.0], expected_version=1)
                    other.commit()
                finally:
                    other.close()
            return [w + 1.0 for w in old]

        new = store.apply_update("u-cas", "nudge", step, dim=1)
        db.commit()

        assert calls == [[1.0], [2.0]]
        assert new == [3.0]
        assert store.get_versioned("u-cas", "nudge", 1) == ([3.0], 3)

    def test_apply_update_gives_up_after_retries(self, db):
        store = PolicyStore(db, cas_retries=0)
        store.upsert_weights("u-cas", "nudge", [1.0])
        db.commit()

        def step(old):
            other = Session(bind=db.get_bind())
            try:
                _, version = PolicyStore(other).get_versioned("u-cas", "nudge", 1)
                PolicyStore(other).upsert_weights("u-cas", "nudge", [9.0], expected_version=version)
                other.commit()
            finally:
                other.close()
            return [0.0]

        with pytest.raises(PolicyWriteConflictError):
            store.apply_update("u-cas", "nudge", step, dim=1)

    def test_one_row_per_key(self, db):
        store = PolicyStore(db)
        store.upsert_weights("u-row", "nudge", [0.1])
        store.upsert_weights("u-row", "nudge", [0.2])
        db.commit()
        assert db.query(PolicyWeights).filter(PolicyWeights.user_id == "u-row").count() == 1
