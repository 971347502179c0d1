"""
Configuration settings for the proctoring console
Uses environment variables with sensible defaults
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import List, Union
import json


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    # Server settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # CORS settings - can be JSON array or comma-separated string
    CORS_ORIGINS: Union[str, List[str]] = "http://localhost:3000,http://localhost:5173"

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from string (comma-separated or JSON) to list"""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return parsed
            except (json.JSONDecodeError, ValueError):
                pass
            origins = [origin.strip() for origin in v.split(",") if origin.strip()]
            return origins if origins else ["http://localhost:3000", "http://localhost:5173"]
        return ["http://localhost:3000", "http://localhost:5173"]

    # Remote session store
    BACKEND_URL: str = "http://localhost:8080/api/proctoring"
    BACKEND_TIMEOUT_SECONDS: float = 5.0

    # Camera settings
    CAMERA_DEVICE_INDEX: int = 0
    CAMERA_WIDTH: int = 1280
    CAMERA_HEIGHT: int = 720
    CAMERA_FACING_MODE: str = "user"
    CAMERA_INIT_TIMEOUT_SECONDS: float = 10.0

    # Session timing
    DECAY_WINDOW_SECONDS: float = 3.0
    TICK_INTERVAL_SECONDS: float = 1.0

    # Simulated detector feed (used until a vision detector is wired in)
    SIMULATE_DETECTIONS: bool = True
    SIMULATED_EVENT_PROBABILITY: float = 0.1

    # Session log store
    LOG_DIR: str = "logs"


_settings = None


def get_settings() -> Settings:
    """Get settings singleton"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
