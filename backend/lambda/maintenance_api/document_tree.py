"""document_tree.py — Canonical model of a customer's nested maintenance documents.

Every table stores one item per ``customer_id`` whose root attribute is a list
of nested nodes. The nesting differs per table, so each table is described by
a ``SchemaKind`` and an ordered tuple of ``Level`` definitions (key field and
child collection per depth). Traversal, merging and aggregation all run on
these level definitions instead of bespoke loops per endpoint.

    config         configswitchgears: switchgear(id|name) -> configuredCBs: cb(id)
    mapping        switchgears: switchgear(switchgearId) -> cbs: cb(taskId)
                       -> tasks: task(mainTask) -> subTasks: subtask(name)
    calendar       configurations: snapshot(configure_Ts) -> switchgears: switchgear(switchgearID)
                       -> cbs: cb(taskId) -> tasks -> subTasks
    preventive     tasks: task(id|mainTask) -> subTasks: subtask(name)
    customer_data  switchgears: bundle(switchgearID)
"""
from __future__ import annotations

import copy
import datetime as dt
import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from config import PARTITION_KEY
from errors import MalformedDataError, NotFoundError, ValidationError

__all__ = [
    "DocumentTree",
    "Level",
    "SCHEMAS",
    "SchemaDef",
    "SchemaKind",
    "Switchgear",
    "child_nodes",
    "find_all",
    "find_by_path",
    "format_iso",
    "format_us",
    "is_true",
    "normalize_key",
    "to_date",
    "to_triple",
]


class SchemaKind(str, enum.Enum):
    CONFIG = "config"
    MAPPING = "mapping"
    CALENDAR = "calendar"
    PREVENTIVE = "preventive"
    CUSTOMER_DATA = "customer_data"


def is_true(value: Any) -> bool:
    """Stored flags arrive as booleans or as the strings "true"/"false"."""
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def normalize_key(value: Any) -> Optional[str]:
    """Canonical form of an identifier so ``1``, ``1.0`` and ``"1"`` compare equal."""
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        if float(value).is_integer():
            return str(int(value))
        return str(value)
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class Level:
    label: str
    key_fields: Tuple[str, ...]
    children: Optional[str] = None

    def key_of(self, node: Dict[str, Any]) -> Optional[str]:
        for name in self.key_fields:
            key = normalize_key(node.get(name))
            if key is not None:
                return key
        return None

    @property
    def key_field(self) -> str:
        return self.key_fields[0]


@dataclass(frozen=True)
class SchemaDef:
    kind: SchemaKind
    root: str
    levels: Tuple[Level, ...]


_TASK = Level("task", ("mainTask",), "subTasks")
_SUBTASK = Level("subtask", ("name",))

SCHEMAS: Dict[SchemaKind, SchemaDef] = {
    SchemaKind.CONFIG: SchemaDef(
        SchemaKind.CONFIG,
        "configswitchgears",
        (
            Level("switchgear", ("id", "name"), "configuredCBs"),
            Level("circuit breaker", ("id",)),
        ),
    ),
    SchemaKind.MAPPING: SchemaDef(
        SchemaKind.MAPPING,
        "switchgears",
        (
            Level("switchgear", ("switchgearId",), "cbs"),
            Level("circuit breaker", ("taskId",), "tasks"),
            _TASK,
            _SUBTASK,
        ),
    ),
    SchemaKind.CALENDAR: SchemaDef(
        SchemaKind.CALENDAR,
        "configurations",
        (
            Level("configuration", ("configure_Ts",), "switchgears"),
            Level("switchgear", ("switchgearID",), "cbs"),
            Level("circuit breaker", ("taskId",), "tasks"),
            _TASK,
            _SUBTASK,
        ),
    ),
    SchemaKind.PREVENTIVE: SchemaDef(
        SchemaKind.PREVENTIVE,
        "tasks",
        (
            Level("task", ("id", "mainTask"), "subTasks"),
            _SUBTASK,
        ),
    ),
    SchemaKind.CUSTOMER_DATA: SchemaDef(
        SchemaKind.CUSTOMER_DATA,
        "switchgears",
        (Level("switchgear", ("switchgearID",)),),
    ),
}


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------


def child_nodes(node: Dict[str, Any], level: Level) -> List[Dict[str, Any]]:
    if not level.children:
        return []
    value = node.get(level.children)
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedDataError(
            f"Expected '{level.children}' of {level.label} to be a list, found {type(value).__name__}."
        )
    return value


def find_by_path(
    nodes: Sequence[Dict[str, Any]],
    levels: Sequence[Level],
    key_path: Sequence[Any],
) -> Dict[str, Any]:
    """Return the node addressed by ``key_path`` (one key per level).

    Raises ``NotFoundError`` naming the first level whose key has no match.
    """
    if len(key_path) > len(levels):
        raise ValueError("key_path is deeper than the schema")
    current: Sequence[Dict[str, Any]] = nodes
    match: Optional[Dict[str, Any]] = None
    for depth, raw_key in enumerate(key_path):
        level = levels[depth]
        wanted = normalize_key(raw_key)
        match = next(
            (n for n in current if isinstance(n, dict) and level.key_of(n) == wanted),
            None,
        )
        if match is None:
            label = level.label[0].upper() + level.label[1:]
            raise NotFoundError(f"{label} '{raw_key}' not found.", level=level.label, key=raw_key)
        if depth + 1 < len(key_path):
            current = child_nodes(match, level)
    if match is None:
        raise ValueError("key_path must not be empty")
    return match


def find_all(
    nodes: Sequence[Dict[str, Any]],
    levels: Sequence[Level],
    key_path: Sequence[Any],
) -> Iterator[Dict[str, Any]]:
    """Yield every node matching ``key_path``; a ``None`` key matches any node at that level."""
    if not key_path:
        return
    level, raw_key, rest = levels[0], key_path[0], key_path[1:]
    wanted = normalize_key(raw_key) if raw_key is not None else None
    for node in nodes or []:
        if not isinstance(node, dict):
            continue
        if wanted is not None and level.key_of(node) != wanted:
            continue
        if rest:
            yield from find_all(child_nodes(node, level), levels[1:], rest)
        else:
            yield node


# ---------------------------------------------------------------------------
# Switchgear variant
# ---------------------------------------------------------------------------

_SWITCHGEAR_FIELDS: Dict[SchemaKind, Tuple[str, str, str]] = {
    SchemaKind.CONFIG: ("id", "name", "configuredCBs"),
    SchemaKind.MAPPING: ("switchgearId", "switchgearName", "cbs"),
    SchemaKind.CALENDAR: ("switchgearID", "switchgearName", "cbs"),
}


@dataclass
class Switchgear:
    """One switchgear regardless of which table shape it was read from."""

    schema_kind: SchemaKind
    switchgear_id: Optional[str]
    name: Optional[str]
    cbs: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_node(cls, kind: SchemaKind, node: Dict[str, Any]) -> "Switchgear":
        if kind not in _SWITCHGEAR_FIELDS:
            raise ValueError(f"{kind.value} documents do not hold switchgears")
        id_field, name_field, cbs_field = _SWITCHGEAR_FIELDS[kind]
        cbs = node.get(cbs_field) or []
        if not isinstance(cbs, list):
            raise MalformedDataError(f"Expected '{cbs_field}' to be a list.")
        return cls(
            schema_kind=kind,
            switchgear_id=node.get(id_field),
            name=node.get(name_field),
            cbs=cbs,
        )

    def matches(self, switchgear_id: Any) -> bool:
        return normalize_key(self.switchgear_id) == normalize_key(switchgear_id)


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------


@dataclass
class DocumentTree:
    customer_id: str
    kind: SchemaKind
    nodes: List[Dict[str, Any]] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)
    version: Optional[int] = None

    @property
    def schema(self) -> SchemaDef:
        return SCHEMAS[self.kind]

    @property
    def levels(self) -> Tuple[Level, ...]:
        return self.schema.levels

    @classmethod
    def from_item(cls, item: Dict[str, Any], kind: SchemaKind) -> "DocumentTree":
        schema = SCHEMAS[kind]
        attributes = {k: v for k, v in item.items() if k not in {PARTITION_KEY, schema.root, "sync_version"}}
        nodes = item.get(schema.root)
        if nodes is None:
            nodes = []
        if not isinstance(nodes, list):
            raise MalformedDataError(
                f"Invalid data format: '{schema.root}' must be a list.",
                customer_id=item.get(PARTITION_KEY),
            )
        version = item.get("sync_version")
        return cls(
            customer_id=str(item.get(PARTITION_KEY, "")),
            kind=kind,
            nodes=nodes,
            attributes=attributes,
            version=int(version) if version is not None else None,
        )

    def to_item(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {PARTITION_KEY: self.customer_id}
        item.update(self.attributes)
        item[self.schema.root] = self.nodes
        if self.version is not None:
            item["sync_version"] = self.version
        return item

    def copy(self) -> "DocumentTree":
        return copy.deepcopy(self)

    def find(self, *key_path: Any) -> Dict[str, Any]:
        return find_by_path(self.nodes, self.levels, key_path)

    def find_all(self, *key_path: Any) -> List[Dict[str, Any]]:
        return list(find_all(self.nodes, self.levels, key_path))

    def switchgears(self) -> List[Switchgear]:
        return [Switchgear.from_node(self.kind, node) for node in self.nodes if isinstance(node, dict)]


# ---------------------------------------------------------------------------
# Date triples ({year, month, day})
# ---------------------------------------------------------------------------


def to_date(value: Any) -> dt.date:
    """Parse a stored ``{year, month, day}`` triple or an ISO date string."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        if isinstance(value, dict):
            return dt.date(int(value["year"]), int(value["month"]), int(value["day"]))
        if isinstance(value, str) and value.strip():
            return dt.date.fromisoformat(value.strip()[:10])
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedDataError(f"Invalid date value: {value!r}") from exc
    raise MalformedDataError(f"Invalid date value: {value!r}")


def to_triple(value: Any) -> Dict[str, int]:
    """Normalize request input into the stored triple form."""
    try:
        day = to_date(value)
    except MalformedDataError as exc:
        raise ValidationError(exc.message) from exc
    return {"year": day.year, "month": day.month, "day": day.day}


def format_iso(value: Any) -> str:
    return to_date(value).strftime("%Y-%m-%d")


def format_us(value: Any) -> str:
    return to_date(value).strftime("%m-%d-%Y")
