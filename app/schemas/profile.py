from typing import Any, Optional
from pydantic import BaseModel, Field


class ProfileResponse(BaseModel):
    user_id: str
    profile: Optional[dict[str, Any]] = Field(
        default=None,
        description="null when the user has not granted ai_profiling.",
    )
