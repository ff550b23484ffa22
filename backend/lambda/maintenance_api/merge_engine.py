"""merge_engine.py — Keyed merges of incoming partial trees into stored documents.

``merge_level`` reconciles one keyed collection; ``tree_merger`` stacks it
level by level for a schema. The document-level operations below return new
``DocumentTree`` objects and never touch the tree they were given, so any
validation or duplicate failure leaves the stored state as it was.
"""
from __future__ import annotations

import copy
import datetime as dt
import enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from document_tree import (
    SCHEMAS,
    DocumentTree,
    Level,
    SchemaKind,
    child_nodes,
    is_true,
    normalize_key,
    to_date,
    to_triple,
)
from errors import DuplicateKeyError, MalformedInputError, NotFoundError, ValidationError

__all__ = [
    "MergePolicy",
    "delete_preventive_task",
    "ensure_unique",
    "merge_calendar",
    "merge_level",
    "merge_mapping",
    "merge_preventive_tasks",
    "merge_switchgear_configs",
    "overlay_fields",
    "remove_by_key",
    "remove_config_cb",
    "remove_planned_cb",
    "store_snapshot_bundle",
    "tree_merger",
    "update_config_cb",
    "update_planned_cb",
    "update_preventive_task",
    "upsert_node",
]

KeyFn = Callable[[Dict[str, Any]], Optional[str]]
ChildMerge = Callable[[List[Dict[str, Any]], List[Dict[str, Any]]], List[Dict[str, Any]]]

# Preventive task fields a baseline (isCustom=false) task never lets a client change.
_PROTECTED_TASK_FIELDS = ("mainTask", "isCustom", "id")


class MergePolicy(str, enum.Enum):
    REJECT = "reject"
    MERGE_CHILDREN = "merge_children"
    REPLACE_SCALARS_ONLY = "replace_scalars_only"


def _title(label: str) -> str:
    return label[:1].upper() + label[1:]


def overlay_fields(
    target: Dict[str, Any],
    incoming: Mapping[str, Any],
    skip: Sequence[str] = (),
    scalars_only: bool = False,
) -> Dict[str, Any]:
    """Copy ``incoming`` fields onto ``target`` in place.

    With ``scalars_only`` a field is left alone when either side holds a list,
    so nested collections survive an update of the node's own attributes.
    """
    for name, value in incoming.items():
        if name in skip:
            continue
        if scalars_only and (isinstance(value, list) or isinstance(target.get(name), list)):
            continue
        target[name] = copy.deepcopy(value)
    return target


def merge_level(
    existing: Optional[Sequence[Dict[str, Any]]],
    incoming: Optional[Sequence[Dict[str, Any]]],
    key_fn: KeyFn,
    policy: MergePolicy,
    child_merge: Optional[ChildMerge] = None,
    children_field: Optional[str] = None,
    collection: str = "node",
) -> List[Dict[str, Any]]:
    """Merge ``incoming`` into ``existing`` by key and return the merged list.

    Existing nodes keep their order; unmatched incoming nodes are appended in
    incoming order. Both inputs are copied first, so a raised error leaves the
    caller's lists untouched.
    """
    result: List[Dict[str, Any]] = copy.deepcopy(list(existing or []))
    positions: Dict[str, int] = {}
    for pos, node in enumerate(result):
        if isinstance(node, dict):
            key = key_fn(node)
            if key is not None and key not in positions:
                positions[key] = pos

    for raw in incoming or []:
        if not isinstance(raw, dict):
            raise MalformedInputError(f"Each {collection} must be an object.", collection=collection)
        node = copy.deepcopy(raw)
        key = key_fn(node)
        if key is None:
            raise MalformedInputError(f"{_title(collection)} is missing its key field.", collection=collection)

        pos = positions.get(key)
        if pos is None:
            # A new node's own children still go through the level policy.
            if child_merge is not None and children_field and children_field in node:
                _merge_children(node, node, children_field, child_merge, collection, key, start_empty=True)
            positions[key] = len(result)
            result.append(node)
            continue

        if policy is MergePolicy.REJECT:
            raise DuplicateKeyError(key, collection)

        target = result[pos]
        if policy is MergePolicy.REPLACE_SCALARS_ONLY:
            overlay_fields(target, node, scalars_only=True)
            continue

        if child_merge is None or not children_field:
            overlay_fields(target, node)
            continue

        overlay_fields(target, node, skip=(children_field,))
        if children_field in node:
            _merge_children(target, node, children_field, child_merge, collection, key)
    return result


def _merge_children(
    target: Dict[str, Any],
    node: Dict[str, Any],
    children_field: str,
    child_merge: ChildMerge,
    collection: str,
    key: str,
    start_empty: bool = False,
) -> None:
    incoming_children = node[children_field]
    if not isinstance(incoming_children, list):
        raise MalformedInputError(
            f"'{children_field}' of {collection} '{key}' must be a list.",
            collection=collection,
        )
    existing_children = [] if start_empty else target.get(children_field)
    if not isinstance(existing_children, list):
        existing_children = []
    try:
        target[children_field] = child_merge(existing_children, incoming_children)
    except DuplicateKeyError as exc:
        if exc.parent:
            raise
        raise DuplicateKeyError(exc.key, exc.collection, parent=f"{collection} '{key}'") from exc


def tree_merger(
    levels: Sequence[Level],
    policy: MergePolicy,
    overrides: Optional[Mapping[int, MergePolicy]] = None,
    key_overrides: Optional[Mapping[int, KeyFn]] = None,
) -> ChildMerge:
    """Build a recursive merge for ``levels``; ``overrides`` swap the policy per depth."""
    overrides = dict(overrides or {})
    key_overrides = dict(key_overrides or {})

    def build(depth: int) -> ChildMerge:
        level = levels[depth]
        child = build(depth + 1) if level.children and depth + 1 < len(levels) else None
        level_policy = overrides.get(depth, policy)
        key_fn = key_overrides.get(depth, level.key_of)

        def merge(existing: List[Dict[str, Any]], incoming: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
            return merge_level(
                existing,
                incoming,
                key_fn,
                level_policy,
                child_merge=child,
                children_field=level.children,
                collection=level.label,
            )

        return merge

    return build(0)


def remove_by_key(
    nodes: Sequence[Dict[str, Any]],
    key: Any,
    key_fn: KeyFn,
    collection: str = "node",
) -> List[Dict[str, Any]]:
    wanted = normalize_key(key)
    kept = [copy.deepcopy(n) for n in nodes if not (isinstance(n, dict) and key_fn(n) == wanted)]
    if len(kept) == len(nodes):
        raise NotFoundError(f"{_title(collection)} '{key}' not found.", level=collection, key=key)
    return kept


def upsert_node(nodes: Sequence[Dict[str, Any]], node: Dict[str, Any], key_fn: KeyFn) -> List[Dict[str, Any]]:
    """Replace the node sharing ``node``'s key in place, or append it."""
    key = key_fn(node)
    if key is None:
        raise MalformedInputError("Node is missing its key field.")
    result = copy.deepcopy(list(nodes))
    for pos, existing in enumerate(result):
        if isinstance(existing, dict) and key_fn(existing) == key:
            result[pos] = copy.deepcopy(node)
            return result
    result.append(copy.deepcopy(node))
    return result


def ensure_unique(nodes: Sequence[Dict[str, Any]], key_fn: KeyFn, collection: str = "node") -> None:
    seen = set()
    for node in nodes:
        if not isinstance(node, dict):
            continue
        key = key_fn(node)
        if key is None:
            continue
        if key in seen:
            raise DuplicateKeyError(key, collection)
        seen.add(key)


def _by_field(name: str) -> KeyFn:
    return lambda node: normalize_key(node.get(name))


# ---------------------------------------------------------------------------
# Switchgear configuration (config)
# ---------------------------------------------------------------------------


def _align_switchgears(stored: Sequence[Dict[str, Any]], incoming: Sequence[Any]) -> List[Any]:
    """Point each incoming switchgear at the known one sharing its name (or, unnamed, its id).

    A matched switchgear takes the known id and name so the merge below keys
    both sides alike. Switchgears earlier in the same batch count as known.
    """
    by_name: Dict[str, Dict[str, Any]] = {}
    by_id: Dict[str, Dict[str, Any]] = {}

    def remember(sg: Dict[str, Any]) -> None:
        name, ident = normalize_key(sg.get("name")), normalize_key(sg.get("id"))
        if name is not None:
            by_name.setdefault(name, sg)
        if ident is not None:
            by_id.setdefault(ident, sg)

    for sg in stored:
        if isinstance(sg, dict):
            remember(sg)

    aligned: List[Any] = []
    for raw in incoming:
        if not isinstance(raw, dict):
            aligned.append(raw)
            continue
        node = dict(raw)
        name = normalize_key(node.get("name"))
        match = by_name.get(name) if name is not None else by_id.get(normalize_key(node.get("id")))
        if match is None:
            remember(node)
        else:
            for field_name in ("id", "name"):
                if match.get(field_name) is not None:
                    node[field_name] = match[field_name]
        aligned.append(node)
    return aligned


def merge_switchgear_configs(tree: DocumentTree, incoming: Sequence[Dict[str, Any]]) -> DocumentTree:
    """Append switchgears/CBs; a CB name already configured under a switchgear of the same name is rejected."""
    if not isinstance(incoming, list) or not incoming:
        raise ValidationError("'configswitchgears' must be a non-empty array.")
    levels = tree.levels
    merge = tree_merger(
        levels,
        MergePolicy.MERGE_CHILDREN,
        overrides={1: MergePolicy.REJECT},
        key_overrides={1: _by_field("name")},
    )
    nodes = merge(tree.nodes, _align_switchgears(tree.nodes, incoming))
    cb_level = levels[1]
    for switchgear in nodes:
        ensure_unique(child_nodes(switchgear, levels[0]), cb_level.key_of, collection=cb_level.label)
    work = tree.copy()
    work.nodes = nodes
    return work


def update_config_cb(
    tree: DocumentTree,
    switchgear_id: Any,
    cb_id: Any,
    updated_cb: Mapping[str, Any],
) -> Tuple[DocumentTree, Dict[str, Any]]:
    if not isinstance(updated_cb, Mapping) or not updated_cb:
        raise ValidationError("'updatedCB' must be a non-empty object.")
    work = tree.copy()
    switchgear = work.find(switchgear_id)
    cb = work.find(switchgear_id, cb_id)
    if "id" in updated_cb and normalize_key(updated_cb["id"]) != normalize_key(cb_id):
        raise ValidationError("A circuit breaker's 'id' cannot be changed.")

    incoming = dict(updated_cb)
    incoming["id"] = cb.get("id")
    cb_level = work.levels[1]
    switchgear[work.levels[0].children] = merge_level(
        child_nodes(switchgear, work.levels[0]),
        [incoming],
        cb_level.key_of,
        MergePolicy.REPLACE_SCALARS_ONLY,
        collection=cb_level.label,
    )
    return work, work.find(switchgear_id, cb_id)


def remove_config_cb(tree: DocumentTree, switchgear_id: Any, cb_id: Any) -> DocumentTree:
    work = tree.copy()
    switchgear = work.find(switchgear_id)
    sg_level, cb_level = work.levels[0], work.levels[1]
    switchgear[sg_level.children] = remove_by_key(
        child_nodes(switchgear, sg_level), cb_id, cb_level.key_of, collection=cb_level.label
    )
    return work


# ---------------------------------------------------------------------------
# Maintenance plan mapping (mapping)
# ---------------------------------------------------------------------------


def merge_mapping(tree: DocumentTree, switchgears: Sequence[Dict[str, Any]]) -> DocumentTree:
    if not isinstance(switchgears, list):
        raise ValidationError("'switchgears' must be an array.")
    work = tree.copy()
    work.nodes = tree_merger(work.levels, MergePolicy.MERGE_CHILDREN)(tree.nodes, list(switchgears))
    return work


def update_planned_cb(
    tree: DocumentTree,
    switchgear_id: Any,
    task_id: Any,
    start: Any = None,
    end: Any = None,
    tasks: Optional[Sequence[Dict[str, Any]]] = None,
    today: Optional[dt.date] = None,
) -> Tuple[DocumentTree, Dict[str, Any]]:
    """Move a planned CB's dates and merge its task list.

    The start date only moves while the stored plan has not started yet.
    """
    today = today or dt.date.today()
    work = tree.copy()
    cb = work.find(switchgear_id, task_id)
    updated = False

    if start:
        if to_date(cb.get("planStartDate")) < today:
            raise ValidationError(
                f"Cannot update 'fromDate' because the plan already started before {today.isoformat()}."
            )
        cb["planStartDate"] = to_triple(start)
        updated = True

    if end:
        cb["planEndDate"] = to_triple(end)
        updated = True

    if tasks is not None:
        if not isinstance(tasks, list):
            raise ValidationError("'tasks' must be an array.")
        task_levels = work.levels[2:]
        cb["tasks"] = tree_merger(task_levels, MergePolicy.MERGE_CHILDREN)(child_nodes(cb, work.levels[1]), tasks)
        updated = True

    if not updated:
        raise ValidationError("No valid fields provided for update.")

    if cb.get("planStartDate") and cb.get("planEndDate"):
        if to_date(cb["planEndDate"]) < to_date(cb["planStartDate"]):
            raise ValidationError("'toDate' cannot be earlier than the plan start date.")
    return work, cb


def remove_planned_cb(tree: DocumentTree, switchgear_id: Any, task_id: Any) -> DocumentTree:
    work = tree.copy()
    switchgear = work.find(switchgear_id)
    sg_level, cb_level = work.levels[0], work.levels[1]
    switchgear[sg_level.children] = remove_by_key(
        child_nodes(switchgear, sg_level), task_id, cb_level.key_of, collection=cb_level.label
    )
    return work


# ---------------------------------------------------------------------------
# Calendar execution snapshots (calendar)
# ---------------------------------------------------------------------------


def merge_calendar(tree: DocumentTree, configurations: Sequence[Dict[str, Any]]) -> DocumentTree:
    if not isinstance(configurations, list):
        raise ValidationError("'configurations' must be an array.")
    work = tree.copy()
    work.nodes = tree_merger(work.levels, MergePolicy.MERGE_CHILDREN)(tree.nodes, list(configurations))
    return work


# ---------------------------------------------------------------------------
# Preventive task sets (preventive)
# ---------------------------------------------------------------------------


def _resolve_task_ids(stored: Sequence[Dict[str, Any]], tasks: Sequence[Any]) -> List[Any]:
    """Give id-less incoming tasks the id of the stored task with the same mainTask."""
    by_main = {}
    for task in stored:
        if isinstance(task, dict) and task.get("id") is not None:
            by_main.setdefault(normalize_key(task.get("mainTask")), task["id"])
    resolved: List[Any] = []
    for task in tasks:
        if isinstance(task, dict) and task.get("id") is None:
            ident = by_main.get(normalize_key(task.get("mainTask")))
            if ident is not None:
                task = dict(task, id=ident)
        resolved.append(task)
    return resolved


def merge_preventive_tasks(tree: DocumentTree, tasks: Sequence[Dict[str, Any]]) -> DocumentTree:
    """Merge a task set; baseline tasks keep their identity fields.

    Task names stay unique across the set, whatever ids the tasks carry.
    """
    if not isinstance(tasks, list):
        raise ValidationError("'tasks' must be an array.")
    tasks = _resolve_task_ids(tree.nodes, tasks)
    task_level = tree.levels[0]
    stored = {task_level.key_of(t): t for t in tree.nodes if isinstance(t, dict)}
    for task in tasks:
        if not isinstance(task, dict):
            continue
        current = stored.get(task_level.key_of(task))
        if current is None or is_true(current.get("isCustom")):
            continue
        for name in _PROTECTED_TASK_FIELDS:
            if name in task and normalize_key(task[name]) != normalize_key(current.get(name)):
                raise ValidationError(f"Cannot update '{name}' of a baseline task.")
    work = tree.copy()
    work.nodes = tree_merger(work.levels, MergePolicy.MERGE_CHILDREN)(tree.nodes, tasks)
    ensure_unique(work.nodes, _by_field("mainTask"), collection=task_level.label)
    return work


def update_preventive_task(
    tree: DocumentTree,
    task_id: Any,
    updates: Mapping[str, Any],
) -> Tuple[DocumentTree, Dict[str, Any]]:
    if not isinstance(updates, Mapping) or not updates:
        raise ValidationError("'updates' must be a non-empty object.")
    work = tree.copy()
    task = work.find(task_id)
    if not is_true(task.get("isCustom")):
        if any(name in updates for name in _PROTECTED_TASK_FIELDS):
            raise ValidationError("Cannot update this field for this task.")
    elif "id" in updates and normalize_key(updates["id"]) != normalize_key(task.get("id")):
        raise ValidationError("A task's 'id' cannot be changed.")

    task_level, subtask_level = work.levels[0], work.levels[1]
    overlay_fields(task, updates, skip=(task_level.children,))
    if task_level.children in updates:
        task[task_level.children] = merge_level(
            child_nodes(task, task_level),
            updates[task_level.children],
            subtask_level.key_of,
            MergePolicy.MERGE_CHILDREN,
            collection=subtask_level.label,
        )
    ensure_unique(work.nodes, _by_field("mainTask"), collection=task_level.label)
    return work, task


def delete_preventive_task(tree: DocumentTree, task_id: Any, subtask_name: Any = None) -> DocumentTree:
    """Delete a custom task, or only one of its subtasks when ``subtask_name`` is given."""
    work = tree.copy()
    task = work.find(task_id)
    if not is_true(task.get("isCustom")):
        raise ValidationError("Cannot delete task for this.")
    task_level, subtask_level = work.levels[0], work.levels[1]
    if subtask_name is not None:
        task[task_level.children] = remove_by_key(
            child_nodes(task, task_level), subtask_name, subtask_level.key_of, collection=subtask_level.label
        )
    else:
        work.nodes = remove_by_key(work.nodes, task_id, task_level.key_of, collection=task_level.label)
    return work


# ---------------------------------------------------------------------------
# Joined snapshot bundles (customer_data)
# ---------------------------------------------------------------------------


def store_snapshot_bundle(tree: DocumentTree, bundle: Dict[str, Any]) -> DocumentTree:
    level = SCHEMAS[SchemaKind.CUSTOMER_DATA].levels[0]
    work = tree.copy()
    work.nodes = upsert_node(tree.nodes, bundle, level.key_of)
    return work
