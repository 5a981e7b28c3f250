"""
Consent Oracle — the single gate in front of every read or write of
learning data.

  snapshot(user_id)          -> ConsentSnapshot
  learning_enabled(user_id)  -> ai_profiling AND policy_learning

Rules
-----
- Never cached: consent can be withdrawn between the moment an experience
  is recorded and the moment the nightly job processes it, so every call
  goes back to the store.
- Fail closed: any error while reading the store yields an all-False
  snapshot. Learning is never enabled by accident.
- No side effects. Writes (grant / withdraw) live on SqlConsentStore.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional, Protocol, Sequence

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import UnknownConsentPurposeError
from app.models.consent import ConsentPurpose, UserConsent
from app.services.audit import record_audit

logger = logging.getLogger(__name__)

PURPOSES: tuple[str, ...] = tuple(p.value for p in ConsentPurpose)


@dataclass(frozen=True)
class ConsentSnapshot:
    ai_profiling: bool = False
    policy_learning: bool = False
    behavioral_tracking: bool = False
    data_export: bool = False

    @property
    def learning_enabled(self) -> bool:
        return self.ai_profiling and self.policy_learning

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)


class ConsentStore(Protocol):
    def get_consents(self, user_id: str) -> Sequence[Mapping[str, Any]]:
        ...


class SqlConsentStore:
    """`user_consents` table adapter."""

    def __init__(self, db: Session):
        self.db = db

    def get_consents(self, user_id: str) -> list[dict[str, Any]]:
        rows = (
            self.db.query(UserConsent.purpose, UserConsent.granted)
            .filter(UserConsent.user_id == user_id)
            .all()
        )
        return [{"purpose": purpose, "granted": granted} for purpose, granted in rows]

    def set_consent(self, user_id: str, purpose: str, granted: bool) -> UserConsent:
        """Grant or withdraw one purpose. Flush only; audited."""
        if purpose not in PURPOSES:
            raise UnknownConsentPurposeError(purpose)

        now = utcnow()
        row = (
            self.db.query(UserConsent)
            .filter(UserConsent.user_id == user_id, UserConsent.purpose == purpose)
            .first()
        )
        old = {"purpose": purpose, "granted": row.granted} if row is not None else None
        if row is None:
            row = UserConsent(user_id=user_id, purpose=purpose, granted=granted)
            self.db.add(row)
        row.granted = granted
        if granted:
            row.granted_at = now
            row.withdrawn_at = None
        else:
            row.withdrawn_at = now

        record_audit(
            self.db,
            user_id=user_id,
            action="consent_granted" if granted else "consent_withdrawn",
            entity="consent",
            entity_id=purpose,
            old_value=old,
            new_value={"purpose": purpose, "granted": granted, "timestamp": now.isoformat()},
        )
        self.db.flush()
        return row

    def grant(self, user_id: str, purpose: str) -> UserConsent:
        return self.set_consent(user_id, purpose, True)

    def withdraw(self, user_id: str, purpose: str) -> UserConsent:
        return self.set_consent(user_id, purpose, False)


class ConsentOracle:
    def __init__(self, store: ConsentStore):
        self.store = store

    def snapshot(self, user_id: str) -> ConsentSnapshot:
        try:
            records = self.store.get_consents(user_id)
        except Exception:
            logger.warning(
                "Consent lookup failed for user %s; failing closed", user_id, exc_info=True
            )
            return ConsentSnapshot()

        granted: dict[str, bool] = {}
        for record in records:
            purpose = record.get("purpose")
            if purpose in PURPOSES:
                granted[purpose] = bool(record.get("granted"))
        return ConsentSnapshot(**granted)

    def learning_enabled(self, user_id: str) -> bool:
        return self.snapshot(user_id).learning_enabled


def sql_consent_oracle(db: Session, store: Optional[ConsentStore] = None) -> ConsentOracle:
    return ConsentOracle(store if store is not None else SqlConsentStore(db))
