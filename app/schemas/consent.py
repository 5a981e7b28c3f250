"""
Consent schemas.

GET /consents/{user_id} → ConsentResponse
PUT /consents/{user_id} → ConsentResponse
"""
from pydantic import BaseModel, Field


class ConsentUpdate(BaseModel):
    purpose: str = Field(
        description='"ai_profiling" | "policy_learning" | "behavioral_tracking" | "data_export"'
    )
    granted: bool


class ConsentResponse(BaseModel):
    user_id: str
    ai_profiling: bool
    policy_learning: bool
    behavioral_tracking: bool
    data_export: bool
    learning_enabled: bool
