"""
Behavioral profile router.

GET /profile/{user_id}   — regenerate and return the behavioral profile
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.base import get_db
from app.schemas.profile import ProfileResponse
from app.services.behavioral_profile import BehavioralProfileEngine

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get(
    "/{user_id}",
    response_model=ProfileResponse,
    summary="Behavioral profile (null without ai_profiling consent)",
)
def get_profile(user_id: str, db: Session = Depends(get_db)):
    profile = BehavioralProfileEngine(db).generate(user_id)
    db.commit()
    return ProfileResponse(user_id=user_id, profile=profile.to_dict() if profile else None)
