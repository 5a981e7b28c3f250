from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "postgresql://sage:sage@db:5432/sage"
    APP_ENV: str = "development"
    SECRET_KEY: str = "changeme-secret-key"
    LOG_LEVEL: str = "INFO"

    # Comma-separated allowed origins, or "*" to allow all.
    # Example: "https://myapp.com,https://api.myapp.com"
    CORS_ORIGINS: str = "*"

    # --- Policy learning ---
    LEARNING_RATE: float = 0.05
    MAX_STEP_NORM: float = 1.0
    WEIGHT_BOUND: float = 5.0
    EXPLORATION_EPSILON: float = 0.1
    POLICY_CAS_RETRIES: int = 3

    # --- Nightly learning job ---
    # Experiences are processed once they are older than MIN_AGE and
    # abandoned once they are older than MAX_AGE.
    LEARNING_MIN_AGE_HOURS: int = 24
    LEARNING_MAX_AGE_HOURS: int = 72
    LEARNING_BATCH_LIMIT: int = 500
    LEARNING_TIME_BUDGET_SECONDS: float = 300.0
    JOB_LOCK_TTL_SECONDS: int = 3600

    # --- Governance ---
    PROPOSAL_TTL_HOURS: int = 48

    # --- Telemetry ---
    TELEMETRY_WINDOW_DAYS: int = 30

    # --- Safety gate ---
    # Hours are UTC. Quiet hours wrap midnight when START > END; equal
    # values disable them.
    QUIET_HOURS_START: int = 22
    QUIET_HOURS_END: int = 7
    MAX_ACTIONS_PER_DAY: int = 5
    MAX_CONSECUTIVE_NUDGES: int = 3
    OVERLOAD_OVERDUE_TASKS: int = 5
    OVERLOAD_DROPOUT_RISK: float = 70.0
    FATIGUE_MIN_FEEDBACK: int = 10
    FATIGUE_HELPFUL_RATE: float = 0.3
    FATIGUE_WINDOW_DAYS: int = 7

    @model_validator(mode="after")
    def _review_window_before_staleness(self) -> "Settings":
        # Every review window closes before its experience goes stale.
        if self.PROPOSAL_TTL_HOURS >= self.LEARNING_MAX_AGE_HOURS:
            raise ValueError("PROPOSAL_TTL_HOURS must be lower than LEARNING_MAX_AGE_HOURS")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
