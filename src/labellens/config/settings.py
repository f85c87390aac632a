from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized config.

    Key idea:
    - read from env first (so tests/CI can override),
    - otherwise default to the values the reports were calibrated with.

    Core functions take explicit arguments; only the CLI and the report
    assembler fall back to these defaults.
    """

    model_config = SettingsConfigDict(env_prefix="LABELLENS_", extra="ignore")

    # Unit costs (currency per annotation / per reworked annotation)
    annotation_unit_cost: float = 0.10
    rework_unit_cost: float = 0.20

    # Record store build policy
    ingest_policy: Literal["strict", "skip"] = "strict"

    # Rounding applied to finalized float metrics
    metric_digits: int = 2

    log_level: str = "WARNING"


settings = Settings()
