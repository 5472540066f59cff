"""Pipeline configuration - origin tag, clock, calendar horizon, run id"""
import os
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Optional

ETL_ORIGIN_TAG = os.getenv("ETL_ORIGIN_TAG", "chinook_etl")
CALENDAR_START_YEAR = int(os.getenv("CALENDAR_START_YEAR", "2000"))
CALENDAR_SPAN_YEARS = int(os.getenv("CALENDAR_SPAN_YEARS", "30"))
ETL_MAX_RETRIES = int(os.getenv("ETL_MAX_RETRIES", "3"))
ETL_RETRY_BACKOFF_SECONDS = float(os.getenv("ETL_RETRY_BACKOFF_SECONDS", "2.0"))
ETL_AUTO_REPAIR = os.getenv("ETL_AUTO_REPAIR", "false").lower() == "true"
ETL_STAGING_WORKERS = int(os.getenv("ETL_STAGING_WORKERS", "4"))


def new_run_id() -> str:
    """Run id: timestamp + short random suffix, sortable by start time."""
    return f"{datetime.now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8]}"


@dataclass
class PipelineConfig:
    """Runtime settings for one pipeline run."""
    origin_tag: str = ETL_ORIGIN_TAG
    calendar_start_year: int = CALENDAR_START_YEAR
    calendar_span_years: int = CALENDAR_SPAN_YEARS
    run_id: str = field(default_factory=new_run_id)
    clock: Callable[[], date] = date.today
    max_retries: int = ETL_MAX_RETRIES
    retry_backoff_seconds: float = ETL_RETRY_BACKOFF_SECONDS
    auto_repair: bool = ETL_AUTO_REPAIR
    staging_workers: int = ETL_STAGING_WORKERS

    def __post_init__(self):
        if self.calendar_span_years < 1:
            raise ValueError(f"calendar_span_years must be >= 1, got {self.calendar_span_years}")
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")

    def today(self) -> date:
        return self.clock()

    @classmethod
    def from_env(cls, run_id: Optional[str] = None) -> 'PipelineConfig':
        """Build config from environment settings."""
        if run_id:
            return cls(run_id=run_id)
        return cls()
