"""
Collector configuration.

Values come from (lowest to highest precedence) defaults, a .env file,
environment variables and explicit overrides such as CLI flags.
"""

import os
from pathlib import Path
from typing import Any, Optional

import dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from .errors import ConfigInvalid
from .store import TABLE_NAME_PATTERN

# Field name -> environment variable
ENV_VARS = {
    "rpc_endpoint": "RPC_URL",
    "db_endpoint": "DATABASE_URL",
    "worker_count": "WORKER_COUNT",
    "queue_capacity": "QUEUE_CAPACITY",
    "start_block": "START_BLOCK",
    "end_block": "END_BLOCK",
    "rpc_timeout": "RPC_TIMEOUT",
    "rpc_max_retries": "RPC_MAX_RETRIES",
    "db_pool_min_size": "DB_POOL_MIN_SIZE",
    "db_pool_max_size": "DB_POOL_MAX_SIZE",
    "db_table": "DB_TABLE",
    "create_table": "CREATE_TABLE",
    "stats_interval": "STATS_INTERVAL",
}


class CollectorConfig(BaseModel):
    rpc_endpoint: str = Field(min_length=1, description="JSON-RPC URL of the node")
    db_endpoint: str = Field(min_length=1, description="Postgres DSN")
    worker_count: int = Field(default=10, gt=0)
    queue_capacity: int = Field(default=1000, gt=0)
    start_block: int = Field(default=17000000, ge=0)
    end_block: int = Field(default=17001000, ge=0)

    rpc_timeout: float = Field(default=15.0, gt=0)
    rpc_max_retries: int = Field(default=1, ge=1, description="Attempts per RPC call, 1 = no retry")
    db_pool_min_size: int = Field(default=1, ge=0)
    db_pool_max_size: Optional[int] = Field(default=None, gt=0, description="Defaults to worker_count")
    db_table: str = "blocks"
    create_table: bool = False
    stats_interval: float = Field(default=10.0, ge=0, description="Seconds between stats logs, 0 = off")

    @model_validator(mode="after")
    def _check(self) -> "CollectorConfig":
        if self.start_block > self.end_block:
            raise ValueError(
                f"start_block ({self.start_block}) must be <= end_block ({self.end_block})"
            )
        if not TABLE_NAME_PATTERN.match(self.db_table):
            raise ValueError(f"db_table is not a valid identifier: {self.db_table!r}")
        if self.db_pool_min_size > self.pool_max_size:
            raise ValueError("db_pool_min_size must be <= db_pool_max_size")
        return self

    @property
    def pool_max_size(self) -> int:
        return self.db_pool_max_size or self.worker_count

    @classmethod
    def build(cls, **values: Any) -> "CollectorConfig":
        """Validate values, raising ConfigInvalid instead of ValidationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigInvalid(problems) from e

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None, **overrides: Any) -> "CollectorConfig":
        """Load config from .env + environment, then apply non-None overrides."""
        if env_file is not None:
            if not Path(env_file).exists():
                raise ConfigInvalid(f"env file not found: {env_file}")
            dotenv.load_dotenv(env_file)
        else:
            dotenv.load_dotenv(dotenv.find_dotenv(usecwd=True))

        values: dict[str, Any] = {}
        for field, var in ENV_VARS.items():
            raw = os.getenv(var)
            if raw is not None and raw != "":
                values[field] = raw

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.build(**values)
