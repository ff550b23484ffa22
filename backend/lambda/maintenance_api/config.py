"""config.py — Environment settings, table names and the shared logger.

Table names and the concurrency policy are bundled into ``StoreConfig`` so the
document store receives them explicitly at construction.
"""
from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from typing import Dict


def _normalize_api_keys(*raw_values: str) -> tuple[str, ...]:
    """Return deduplicated, non-empty key values from scalar/csv env sources."""
    keys: list[str] = []
    seen: set[str] = set()
    for raw in raw_values:
        if not raw:
            continue
        for part in str(raw).split(","):
            key = part.strip()
            if not key or key in seen:
                continue
            seen.add(key)
            keys.append(key)
    return tuple(keys)


__all__ = [
    "CORS_ORIGIN",
    "ConcurrencyPolicy",
    "DEFAULT_TABLE_NAMES",
    "DYNAMODB_ENDPOINT_URL",
    "DYNAMODB_REGION",
    "JWT_ALGORITHM",
    "JWT_SECRET",
    "MAINTENANCE_INTERNAL_API_KEY",
    "MAINTENANCE_INTERNAL_API_KEYS",
    "PARTITION_KEY",
    "StoreConfig",
    "SWITCHGEAR_TYPE_TABLE",
    "TABLE_READ_CAPACITY",
    "TABLE_WRITE_CAPACITY",
    "UNKNOWN_LOCATION",
    "logger",
]

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DYNAMODB_REGION = os.environ.get("DYNAMODB_REGION", "ap-southeast-1")
DYNAMODB_ENDPOINT_URL = os.environ.get("DYNAMODB_ENDPOINT_URL", "")
CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "*")

JWT_SECRET = os.environ.get("JWT_SECRET", "")
JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
MAINTENANCE_INTERNAL_API_KEY = os.environ.get("MAINTENANCE_INTERNAL_API_KEY", "")
MAINTENANCE_INTERNAL_API_KEY_PREVIOUS = os.environ.get("MAINTENANCE_INTERNAL_API_KEY_PREVIOUS", "")
MAINTENANCE_INTERNAL_API_KEYS = _normalize_api_keys(
    os.environ.get("MAINTENANCE_INTERNAL_API_KEYS", ""),
    MAINTENANCE_INTERNAL_API_KEY,
    MAINTENANCE_INTERNAL_API_KEY_PREVIOUS,
)

PARTITION_KEY = "customer_id"
TABLE_READ_CAPACITY = int(os.environ.get("TABLE_READ_CAPACITY", "5"))
TABLE_WRITE_CAPACITY = int(os.environ.get("TABLE_WRITE_CAPACITY", "5"))
SWITCHGEAR_TYPE_TABLE = os.environ.get("SWITCHGEAR_TYPE_TABLE", "switchgearType")
UNKNOWN_LOCATION = "Unknown Location"

# Keyed by schema kind (see document_tree.SchemaKind values).
DEFAULT_TABLE_NAMES: Dict[str, str] = {
    "config": "switchgearConfig_Store",
    "mapping": "Preventive_mappping_Storage",
    "calendar": "calander_Tasks_Update",
    "preventive": "Preventive_mentainance_Storage",
    "customer_data": "customer_data_table",
}

_TABLE_ENV_VARS = {
    "config": "SWITCHGEAR_CONFIG_TABLE",
    "mapping": "MAPPING_TABLE",
    "calendar": "CALENDAR_TABLE",
    "preventive": "PREVENTIVE_TASK_TABLE",
    "customer_data": "CUSTOMER_DATA_TABLE",
}


class ConcurrencyPolicy(str, enum.Enum):
    """How ``DocumentStore.save`` treats concurrent writers for one customer."""

    LAST_WRITER_WINS = "last_writer_wins"
    OPTIMISTIC_TOKEN = "optimistic_token"

    @classmethod
    def parse(cls, raw: str) -> "ConcurrencyPolicy":
        value = (raw or "").strip().lower()
        for member in cls:
            if member.value == value:
                return member
        return cls.LAST_WRITER_WINS


@dataclass
class StoreConfig:
    table_names: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TABLE_NAMES))
    concurrency_policy: ConcurrencyPolicy = ConcurrencyPolicy.LAST_WRITER_WINS
    read_capacity: int = TABLE_READ_CAPACITY
    write_capacity: int = TABLE_WRITE_CAPACITY

    @classmethod
    def from_env(cls) -> "StoreConfig":
        names = {
            kind: os.environ.get(env_var, DEFAULT_TABLE_NAMES[kind])
            for kind, env_var in _TABLE_ENV_VARS.items()
        }
        return cls(
            table_names=names,
            concurrency_policy=ConcurrencyPolicy.parse(os.environ.get("CONCURRENCY_POLICY", "")),
            read_capacity=TABLE_READ_CAPACITY,
            write_capacity=TABLE_WRITE_CAPACITY,
        )

    def table_for(self, kind: str) -> str:
        return self.table_names[kind]


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger()
logger.setLevel(logging.INFO)
