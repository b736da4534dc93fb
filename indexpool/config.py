"""Runtime settings for pools, the oracle, categories and the controller.

Protocol bounds live in indexpool.constants; the values here are the
tunable defaults. Each model is frozen and validated, and can be read from
INDEXPOOL_* environment variables:

    pool_settings = PoolSettings.from_env()  # INDEXPOOL_SWAP_FEE, ...
    controller_settings = ControllerSettings.from_env()  # INDEXPOOL_REWEIGH_DELAY, ...
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from indexpool.constants import (
    CATEGORY_SORT_DELAY,
    DEFAULT_SWAP_FEE,
    LONG_TWAP_MAX_TIME_ELAPSED,
    LONG_TWAP_MIN_TIME_ELAPSED,
    MAX_CATEGORY_TOKENS,
    MAX_FEE,
    MIN_BALANCE_UPDATE_DELAY,
    MIN_FEE,
    OBSERVATION_PERIOD,
    REINDEX_DELAY,
    REWEIGH_DELAY,
    SHORT_TWAP_MAX_TIME_ELAPSED,
    SHORT_TWAP_MIN_TIME_ELAPSED,
    WEIGHT_UPDATE_DELAY,
)

ENV_PREFIX = "INDEXPOOL_"


class _EnvSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Any:
        """Build settings from INDEXPOOL_<FIELD> variables, defaulting the rest."""
        env = os.environ if environ is None else environ
        values = {
            name: env[ENV_PREFIX + name.upper()]
            for name in cls.model_fields
            if ENV_PREFIX + name.upper() in env
        }
        return cls.model_validate(values)


class PoolSettings(_EnvSettings):
    """Pool parameters.

    Attributes:
        swap_fee: Initial swap fee (18-decimal)
        weight_update_delay: Minimum seconds between weight steps of one token
        min_balance_update_delay: Minimum seconds between minimum balance changes
    """

    swap_fee: int = Field(default=DEFAULT_SWAP_FEE, ge=MIN_FEE, le=MAX_FEE)
    weight_update_delay: int = Field(default=WEIGHT_UPDATE_DELAY, ge=0)
    min_balance_update_delay: int = Field(default=MIN_BALANCE_UPDATE_DELAY, ge=0)


class OracleSettings(_EnvSettings):
    """Oracle observation period and TWAP windows (seconds)."""

    observation_period: int = Field(default=OBSERVATION_PERIOD, gt=0)
    short_twap_min_time_elapsed: int = Field(default=SHORT_TWAP_MIN_TIME_ELAPSED, gt=0)
    short_twap_max_time_elapsed: int = Field(default=SHORT_TWAP_MAX_TIME_ELAPSED, gt=0)
    long_twap_min_time_elapsed: int = Field(default=LONG_TWAP_MIN_TIME_ELAPSED, gt=0)
    long_twap_max_time_elapsed: int = Field(default=LONG_TWAP_MAX_TIME_ELAPSED, gt=0)

    @model_validator(mode="after")
    def _check_windows(self) -> OracleSettings:
        if self.short_twap_min_time_elapsed > self.short_twap_max_time_elapsed:
            raise ValueError("short TWAP window is empty")
        if self.long_twap_min_time_elapsed > self.long_twap_max_time_elapsed:
            raise ValueError("long TWAP window is empty")
        return self


class CategorySettings(_EnvSettings):
    """Category size and sort rate limit."""

    max_category_tokens: int = Field(default=MAX_CATEGORY_TOKENS, gt=0)
    sort_delay: int = Field(default=CATEGORY_SORT_DELAY, ge=0)


class ControllerSettings(_EnvSettings):
    """Controller rate limits (seconds)."""

    reweigh_delay: int = Field(default=REWEIGH_DELAY, ge=0)
    reindex_delay: int = Field(default=REINDEX_DELAY, ge=0)
