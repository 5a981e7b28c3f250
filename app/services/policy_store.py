"""
Policy Store — per-(user, action) weight vectors.

Public API
----------
get_weights(user_id, action, dim)                 -> list[float]  (zero vector if unseen)
upsert_weights(user_id, action, vector, expected) -> int          (new version)
apply_update(user_id, action, fn, dim)            -> list[float]  (read-modify-write, CAS)
all_weights(user_id, dim)                         -> dict[action, list[float]]

Concurrency
-----------
Writes are a compare-and-set on `version`:

    UPDATE sage_policy_weights SET weights=…, version=v+1
     WHERE user_id=… AND action_type=… AND version=v

Zero rows matched means somebody else wrote in between; apply_update
re-reads and retries a bounded number of times. A first write for a key
races on the (user_id, action_type) unique constraint instead; the loser
gets PolicyWriteConflictError and its transaction must be rolled back.

Every write appends an audit entry. Flush only; the caller commits.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import settings
from app.core.errors import PolicyWriteConflictError
from app.models.experience import ACTIONS
from app.models.policy_weights import PolicyWeights
from app.services.audit import record_audit

logger = logging.getLogger(__name__)


class PolicyStore:
    def __init__(self, db: Session, cas_retries: Optional[int] = None):
        self.db = db
        self.cas_retries = settings.POLICY_CAS_RETRIES if cas_retries is None else cas_retries

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _row(self, user_id: str, action: str) -> Optional[PolicyWeights]:
        return (
            self.db.query(PolicyWeights)
            .filter(PolicyWeights.user_id == user_id, PolicyWeights.action_type == action)
            .populate_existing()
            .first()
        )

    def get_versioned(self, user_id: str, action: str, dim: int) -> tuple[list[float], int]:
        """Current vector and its version; (zero vector, 0) for an unseen key."""
        row = self._row(user_id, action)
        if row is None:
            return [0.0] * dim, 0
        return [float(w) for w in row.weights], row.version

    def get_weights(self, user_id: str, action: str, dim: int) -> list[float]:
        return self.get_versioned(user_id, action, dim)[0]

    def all_weights(self, user_id: str, dim: int) -> dict[str, list[float]]:
        rows = (
            self.db.query(PolicyWeights)
            .filter(PolicyWeights.user_id == user_id)
            .all()
        )
        stored = {r.action_type: [float(w) for w in r.weights] for r in rows}
        return {a: stored.get(a, [0.0] * dim) for a in ACTIONS}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_weights(
        self,
        user_id: str,
        action: str,
        vector: Sequence[float],
        expected_version: Optional[int] = None,
    ) -> int:
        """
        Write `vector` for (user_id, action). With `expected_version` the
        write only succeeds if the stored version still matches (0 = no row
        yet). Without it, the current version is read and used.
        """
        if action not in ACTIONS:
            raise ValueError(f"unknown action {action!r}")
        new_weights = [float(w) for w in vector]

        if expected_version is None:
            _, expected_version = self.get_versioned(user_id, action, len(new_weights))

        now = utcnow()
        if expected_version == 0:
            old_weights = None
            try:
                self.db.add(PolicyWeights(
                    user_id=user_id,
                    action_type=action,
                    weights=new_weights,
                    version=1,
                    updated_at=now,
                ))
                self.db.flush()
            except IntegrityError as exc:
                raise PolicyWriteConflictError(user_id, action) from exc
            new_version = 1
        else:
            current = self._row(user_id, action)
            old_weights = list(current.weights) if current is not None else None
            matched = (
                self.db.query(PolicyWeights)
                .filter(
                    PolicyWeights.user_id == user_id,
                    PolicyWeights.action_type == action,
                    PolicyWeights.version == expected_version,
                )
                .update(
                    {
                        PolicyWeights.weights: new_weights,
                        PolicyWeights.version: expected_version + 1,
                        PolicyWeights.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            if matched == 0:
                raise PolicyWriteConflictError(user_id, action)
            new_version = expected_version + 1

        record_audit(
            self.db,
            user_id=user_id,
            action="policy_weights_updated",
            entity="sage_policy_weights",
            entity_id=f"{user_id}:{action}",
            old_value={"weights": old_weights, "version": expected_version} if old_weights is not None else None,
            new_value={"weights": new_weights, "version": new_version},
        )
        self.db.flush()
        return new_version

    def apply_update(
        self,
        user_id: str,
        action: str,
        fn: Callable[[list[float]], list[float]],
        dim: int,
    ) -> list[float]:
        """
        Serialized read-modify-write. `fn` maps the current vector to the new
        one and may be called more than once, so it must be pure.
        """
        attempt = 0
        while True:
            old, version = self.get_versioned(user_id, action, dim)
            new = fn(old)
            try:
                self.upsert_weights(user_id, action, new, expected_version=version)
                return new
            except PolicyWriteConflictError:
                # A lost insert race poisons the transaction; only CAS misses are retryable.
                if version == 0 or attempt >= self.cas_retries:
                    raise
                attempt += 1
                logger.info(
                    "Policy CAS miss for (%s, %s), retry %d/%d",
                    user_id, action, attempt, self.cas_retries,
                )
