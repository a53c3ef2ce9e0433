"""
# Configuration Module

This module centralizes **all runtime configuration** for the study scheduler engine.
Settings are declared on a single Pydantic `BaseSettings` model and loaded once at import
time into the module-level `settings` object.

## Configuration Hierarchy

Values are resolved in the following order (first match wins):

1. **Environment variables** (e.g. `export SRS_DEFAULT_PREFERRED_HOUR=9`)
2. **Config file** pointed to by `STUDY_SCHEDULER_CONFIG_PATH`
3. **`.env` file** in the project root
4. **Defaults** declared on the `Settings` class

## Configuration Groups

- **MongoDB**: `MONGODB_URL`, `MONGODB_DATABASE`, pool sizes and timeouts used by
  `database.manager.DatabaseManager`.
- **Logging**: `LOG_LEVEL` consumed by `managers.logging_manager`.
- **Spaced repetition** (`SRS_*`): tier interval tables, monthly reminder caps, jitter,
  preferred hour and the performance thresholds that shrink or grow intervals.
- **Analytics** (`ANALYTICS_*`): minimum sample sizes and window lengths.
- **Recurring tasks** (`RECURRING_*`): sweep interval and catch-up bound.

## Usage

```python
from study_scheduler.config import settings

intervals = settings.SRS_TIER_INTERVALS[settings.SRS_DEFAULT_TIER]
```

Complex values (lists, dicts) are given as JSON in the environment:

```bash
export SRS_TIER_INTERVALS='{"free": [1, 3, 7], "premium": [1, 3, 7, 14, 30]}'
```
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Constants ---
DEFAULT_ENV_FILENAME: str = ".env"
CONFIG_ENV_VAR: str = "STUDY_SCHEDULER_CONFIG_PATH"
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent


# --- Config file discovery (no logging) ---
def get_config_path() -> Optional[str]:
    """
    Determines the configuration file path.

    1. **Environment Variable**: `STUDY_SCHEDULER_CONFIG_PATH` (if set and the file exists).
    2. **Dotenv Config**: `.env` file in the project root directory.
    3. **Fallback**: `None`, meaning environment-variable-only mode.

    Returns:
        Optional[str]: The path to the configuration file, or `None` if not found.
    """
    env_path: Optional[str] = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    env_path_file: Path = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if env_path_file.exists():
        return str(env_path_file)
    return None


CONFIG_PATH: Optional[str] = get_config_path()
if CONFIG_PATH:
    load_dotenv(dotenv_path=CONFIG_PATH, override=False)


class Settings(BaseSettings):
    """
    Engine configuration settings model.

    **Configuration Groups:**
    *   **Database**: MongoDB connection details.
    *   **Logging**: Log level.
    *   **SRS**: Interval tables per subscription tier, jitter and adaptation thresholds.
    *   **Analytics**: Sample-size thresholds for pattern detection.
    *   **Recurring**: Background sweep cadence.
    """

    model_config = SettingsConfigDict(
        env_file=CONFIG_PATH if CONFIG_PATH else None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
    )

    # MongoDB configuration
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DATABASE: str = "study_scheduler"
    MONGODB_CONNECTION_TIMEOUT: int = 10000
    MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000
    MONGODB_MIN_POOL_SIZE: int = 5
    MONGODB_MAX_POOL_SIZE: int = 50

    # Logging
    LOG_LEVEL: str = "INFO"

    # Timezone used when a user or pattern has none
    DEFAULT_TIMEZONE: str = "UTC"

    # --- Spaced repetition ---
    SRS_DEFAULT_TIER: str = "free"
    SRS_TIER_INTERVALS: Dict[str, List[int]] = {
        "free": [1, 3, 7],
        "premium": [1, 3, 7, 14, 30, 60, 120, 180],
    }
    SRS_TIER_MONTHLY_REMINDER_LIMITS: Dict[str, int] = {
        "free": 15,
        "premium": 112,
    }
    SRS_DEFAULT_PREFERRED_HOUR: int = 10
    SRS_JITTER_MINUTES: int = 30
    SRS_MINIMAL_JITTER_MINUTES: int = 60  # used for the "minimal" reminder frequency
    SRS_MIN_LEAD_MINUTES: int = 5
    SRS_HISTORY_WINDOW: int = 50
    SRS_STRUGGLING_QUALITY: float = 3.0
    SRS_EXCELLING_QUALITY: float = 4.0
    SRS_EXCELLING_EASE: float = 2.8
    SRS_SHRINK_FACTOR: float = 0.8
    SRS_GROW_FACTOR: float = 1.2
    SRS_DIFFICULTY_MULTIPLIERS: Dict[str, float] = {
        "conservative": 0.8,
        "moderate": 1.0,
        "aggressive": 1.3,
    }
    SRS_DEFAULT_EASE_FACTOR: float = 2.5
    SRS_MIN_EASE_FACTOR: float = 1.3

    # --- Analytics ---
    ANALYTICS_MIN_TOPIC_REVIEWS: int = 3
    ANALYTICS_TREND_WINDOW: int = 7
    ANALYTICS_MIN_HOUR_SAMPLES: int = 3
    ANALYTICS_TOP_STUDY_TIMES: int = 5
    ANALYTICS_WEEKLY_HISTORY_LIMIT: int = 100
    ANALYTICS_UPCOMING_REVIEWS_LIMIT: int = 10

    # --- Recurring tasks ---
    RECURRING_SWEEP_INTERVAL_MINUTES: int = 15
    RECURRING_MAX_CATCHUP: int = 50
    RECURRING_UPCOMING_WINDOW_DAYS: int = 7

    @field_validator("MONGODB_URL", "MONGODB_DATABASE", mode="before")
    @classmethod
    def no_empty_values(cls, v: Any, info: Any) -> Any:
        """
        Validates that MongoDB connection values are not empty.

        Raises:
            ValueError: If the value is empty or whitespace.
        """
        if not v or not str(v).strip():
            raise ValueError(f"{info.field_name} must be set via environment or .env and not empty!")
        return v

    @field_validator("SRS_TIER_INTERVALS")
    @classmethod
    def positive_intervals(cls, v: Dict[str, List[int]]) -> Dict[str, List[int]]:
        """Every tier needs at least one interval and all intervals are whole days >= 1."""
        for tier, intervals in v.items():
            if not intervals:
                raise ValueError(f"SRS_TIER_INTERVALS[{tier}] must not be empty")
            if any(day < 1 for day in intervals):
                raise ValueError(f"SRS_TIER_INTERVALS[{tier}] must only contain intervals >= 1 day")
        return v

    @field_validator("SRS_DEFAULT_PREFERRED_HOUR")
    @classmethod
    def valid_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("SRS_DEFAULT_PREFERRED_HOUR must be between 0 and 23")
        return v

    @field_validator("SRS_JITTER_MINUTES", "SRS_MINIMAL_JITTER_MINUTES", "SRS_MIN_LEAD_MINUTES")
    @classmethod
    def non_negative_minutes(cls, v: int, info: Any) -> int:
        if v < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return v

    def intervals_for_tier(self, tier: Optional[str]) -> List[int]:
        """Base interval sequence for a subscription tier, falling back to the default tier."""
        if tier and tier in self.SRS_TIER_INTERVALS:
            return list(self.SRS_TIER_INTERVALS[tier])
        return list(self.SRS_TIER_INTERVALS.get(self.SRS_DEFAULT_TIER, [1, 3, 7]))

    def monthly_reminder_limit(self, tier: Optional[str]) -> int:
        limits = self.SRS_TIER_MONTHLY_REMINDER_LIMITS
        if tier and tier in limits:
            return limits[tier]
        return limits.get(self.SRS_DEFAULT_TIER, 15)


# Global settings instance
settings: Settings = Settings()
