import os
from pydantic import BaseModel

class Settings(BaseModel):
    allow_origin: str = os.getenv("ALLOW_ORIGIN", "*")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    default_starting_power: float = float(os.getenv("DEFAULT_STARTING_POWER", "1.0"))
    rounding_policy: str = os.getenv("ROUNDING_POLICY", "quality_of_fit")
    outlier_policy: str = os.getenv("OUTLIER_POLICY", "standard")
    max_sessions: int = int(os.getenv("MAX_SESSIONS", "1000"))

settings = Settings()
