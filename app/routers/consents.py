"""
Consent router.

GET /consents/{user_id}   — current consent snapshot
PUT /consents/{user_id}   — grant or withdraw one purpose
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.base import get_db
from app.schemas.common import ErrorResponse
from app.schemas.consent import ConsentResponse, ConsentUpdate
from app.services.consent import ConsentOracle, SqlConsentStore

router = APIRouter(prefix="/consents", tags=["consents"])


def _snapshot_response(user_id: str, oracle: ConsentOracle) -> ConsentResponse:
    snap = oracle.snapshot(user_id)
    return ConsentResponse(user_id=user_id, learning_enabled=snap.learning_enabled, **snap.to_dict())


@router.get("/{user_id}", response_model=ConsentResponse, summary="Consent snapshot")
def get_consents(user_id: str, db: Session = Depends(get_db)):
    return _snapshot_response(user_id, ConsentOracle(SqlConsentStore(db)))


@router.put(
    "/{user_id}",
    response_model=ConsentResponse,
    summary="Grant or withdraw a consent purpose",
    responses={422: {"model": ErrorResponse, "description": "Unknown purpose."}},
)
def update_consent(user_id: str, payload: ConsentUpdate, db: Session = Depends(get_db)):
    store = SqlConsentStore(db)
    store.set_consent(user_id, payload.purpose, payload.granted)
    db.commit()
    return _snapshot_response(user_id, ConsentOracle(store))
