"""aggregation.py — Read-only derived views over mapping, config and calendar documents.

Nothing here mutates its inputs; every view is built from copies.
"""
from __future__ import annotations

import copy
import datetime as dt
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from config import UNKNOWN_LOCATION
from document_tree import (
    SCHEMAS,
    DocumentTree,
    SchemaKind,
    Switchgear,
    find_all,
    find_by_path,
    format_iso,
    format_us,
    is_true,
    normalize_key,
    to_date,
)
from errors import NotFoundError, ValidationError

__all__ = [
    "PLAN_TYPES",
    "build_plan_checklists",
    "cb_location",
    "cb_schedule_summary",
    "compute_duration",
    "days_between",
    "execution_records",
    "expand_recurrences",
    "filter_calendar",
    "filter_plan_schedules",
    "group_by_plan_type",
    "group_subtasks_by_schedule",
    "individual_status",
    "js_round",
    "latest_snapshot",
    "merge_and_group_checklists",
    "overlay_execution_fields",
    "schedule_interval_days",
    "snapshot_details",
    "subtask_count",
    "switchgear_bundle",
    "total_plan",
]

PLAN_TYPES = ("Individual", "Totalplan")
EXECUTION_FIELDS = ("reportRef", "remarks", "status", "performedBy", "comments")

_TRAILING_DIGITS = re.compile(r"\d+$")
_SCHEDULE_SUFFIX = re.compile(r"_\d+$")
_CALENDAR_LEVELS = SCHEMAS[SchemaKind.CALENDAR].levels
_CONFIG_LEVELS = SCHEMAS[SchemaKind.CONFIG].levels
_MAPPING_LEVELS = SCHEMAS[SchemaKind.MAPPING].levels


# ---------------------------------------------------------------------------
# Date arithmetic
# ---------------------------------------------------------------------------


def schedule_interval_days(tag: Any) -> int:
    """Interval encoded as the trailing digits of a schedule tag (``Monthly_10`` -> 10)."""
    match = _TRAILING_DIGITS.search(str(tag or ""))
    interval = int(match.group(0)) if match else 1
    return interval if interval > 0 else 1


def js_round(value: float) -> int:
    # Halves round towards +infinity.
    return int(math.floor(value + 0.5))


def days_between(end: Any, start: Any) -> int:
    if isinstance(end, dt.datetime) or isinstance(start, dt.datetime):
        end_dt = end if isinstance(end, dt.datetime) else dt.datetime.combine(to_date(end), dt.time())
        start_dt = start if isinstance(start, dt.datetime) else dt.datetime.combine(to_date(start), dt.time())
        return int(math.ceil((end_dt - start_dt).total_seconds() / 86400))
    return (to_date(end) - to_date(start)).days


def total_plan(start: Any, end: Any, tag: Any) -> int:
    return js_round(days_between(end, start) / schedule_interval_days(tag))


# ---------------------------------------------------------------------------
# Execution records
# ---------------------------------------------------------------------------


def latest_snapshot(configurations: Sequence[Dict[str, Any]]) -> Optional[str]:
    level = _CALENDAR_LEVELS[0]
    keys = [level.key_of(c) for c in configurations or [] if isinstance(c, dict)]
    keys = [k for k in keys if k]
    return max(keys) if keys else None


def execution_records(
    calendar_nodes: Sequence[Dict[str, Any]],
    task_id: Any,
    main_task: Any,
    subtask_name: Any,
    configure_ts: Any = None,
) -> List[Dict[str, Any]]:
    """Calendar subtasks recorded for one planned subtask, across snapshots unless ``configure_ts`` is given."""
    return list(find_all(calendar_nodes, _CALENDAR_LEVELS, [configure_ts, None, task_id, main_task, subtask_name]))


def subtask_count(cb: Dict[str, Any]) -> int:
    return sum(len(task.get("subTasks") or []) for task in cb.get("tasks") or [] if isinstance(task, dict))


def _cb_records(
    cb: Dict[str, Any],
    calendar_nodes: Sequence[Dict[str, Any]],
    configure_ts: Any = None,
) -> List[Dict[str, Any]]:
    records: List[Dict[str, Any]] = []
    for task in cb.get("tasks") or []:
        for subtask in task.get("subTasks") or []:
            records.extend(
                execution_records(calendar_nodes, cb.get("taskId"), task.get("mainTask"), subtask.get("name"), configure_ts)
            )
    return records


def cb_location(config_nodes: Sequence[Dict[str, Any]], switchgear_id: Any, cb_id: Any) -> str:
    try:
        cb = find_by_path(config_nodes, _CONFIG_LEVELS, [switchgear_id, cb_id])
    except NotFoundError:
        return UNKNOWN_LOCATION
    data = ((cb.get("configurations") or {}).get("equipmentDetails") or {}).get("data") or {}
    return data.get("switchgearLocation") or UNKNOWN_LOCATION


# ---------------------------------------------------------------------------
# Plan summaries
# ---------------------------------------------------------------------------


def compute_duration(
    mapping_nodes: Sequence[Dict[str, Any]],
    config_nodes: Sequence[Dict[str, Any]],
    calendar_nodes: Sequence[Dict[str, Any]],
    schedule_filter: Optional[str] = None,
    configure_ts: Any = None,
) -> List[Dict[str, Any]]:
    """Per-switchgear CB rows with ``totalPlan``/``pendingPlan``/``completePlan`` counts."""
    out: List[Dict[str, Any]] = []
    for switchgear in copy.deepcopy(list(mapping_nodes or [])):
        rows = []
        for cb in switchgear.get("cbs") or []:
            if schedule_filter and cb.get("planshudule") != schedule_filter:
                continue
            records = _cb_records(cb, calendar_nodes, configure_ts)
            if records:
                complete = sum(1 for r in records if is_true(r.get("status")))
                pending = len(records) - complete
            else:
                complete, pending = 0, subtask_count(cb)
            rows.append(
                {
                    "cbname": cb.get("cbname"),
                    "cbid": cb.get("cbid"),
                    "pms_des": cb.get("pms_des"),
                    "taskId": cb.get("taskId"),
                    "planshudule": cb.get("planshudule"),
                    "planStartDate": format_us(cb.get("planStartDate")),
                    "totalPlan": total_plan(cb.get("planStartDate"), cb.get("planEndDate"), cb.get("planshudule")),
                    "pendingPlan": pending,
                    "completePlan": complete,
                    "location": cb_location(config_nodes, switchgear.get("switchgearId"), cb.get("cbid")),
                }
            )
        switchgear["cbs"] = rows
        out.append(switchgear)
    return out


def individual_status(records: Sequence[Dict[str, Any]]) -> Tuple[str, str]:
    if not records:
        return "pending", "Invalid"
    status = "completed" if all(is_true(r.get("status")) for r in records) else "pending"
    validation = "Valid" if all(is_true(r.get("validation")) for r in records) else "Invalid"
    return status, validation


def _individual_rows(
    mapping_nodes: Sequence[Dict[str, Any]],
    config_nodes: Sequence[Dict[str, Any]],
    calendar_nodes: Sequence[Dict[str, Any]],
    configure_ts: Any = None,
) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for switchgear in copy.deepcopy(list(mapping_nodes or [])):
        rows = []
        for cb in switchgear.get("cbs") or []:
            status, validation = individual_status(_cb_records(cb, calendar_nodes, configure_ts))
            rows.append(
                {
                    "cbname": cb.get("cbname"),
                    "cbid": cb.get("cbid"),
                    "pms_des": cb.get("pms_des"),
                    "taskId": cb.get("taskId"),
                    "planshudule": cb.get("planshudule"),
                    "planEndDate": format_us(cb.get("planEndDate")),
                    "planStartDate": format_us(cb.get("planStartDate")),
                    "status": status,
                    "validation": validation,
                    "location": cb_location(config_nodes, switchgear.get("switchgearId"), cb.get("cbid")),
                }
            )
        switchgear["cbs"] = rows
        out.append(switchgear)
    return out


def group_by_plan_type(
    plan_type: str,
    mapping_nodes: Sequence[Dict[str, Any]],
    config_nodes: Sequence[Dict[str, Any]],
    calendar_nodes: Sequence[Dict[str, Any]],
    schedule_type: Optional[str] = None,
    configure_ts: Any = None,
) -> List[Dict[str, Any]]:
    if plan_type == "Individual":
        return _individual_rows(mapping_nodes, config_nodes, calendar_nodes, configure_ts)
    if plan_type == "Totalplan":
        return compute_duration(mapping_nodes, config_nodes, calendar_nodes, schedule_type or None, configure_ts)
    raise ValidationError(f"Unsupported planType '{plan_type}'.", allowed=list(PLAN_TYPES))


# ---------------------------------------------------------------------------
# Checklist calendar
# ---------------------------------------------------------------------------


def expand_recurrences(summary: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Split one plan window into consecutive instances of the schedule interval.

    Each instance starts one interval after the previous one; the last instance
    ends on the window's original end date. The count is recomputed from the
    window dates and ``checkListType``; a ``totalPlan`` carried on the summary
    is not consulted.
    """
    start = to_date(summary["plannedDate"])
    end = to_date(summary["date"])
    interval = schedule_interval_days(summary.get("checkListType"))
    count = total_plan(start, end, summary.get("checkListType"))
    if count <= 1:
        return [dict(summary)]

    instances = []
    current = start
    for index in range(count):
        instance = dict(summary)
        instance["plannedDate"] = current.isoformat()
        if index < count - 1:
            current = current + dt.timedelta(days=interval)
            instance["date"] = current.isoformat()
        else:
            instance["date"] = end.isoformat()
        instances.append(instance)
    return instances


_GROUP_FIELDS = ("plannedDate", "date", "checkListType", "id", "custId", "deviceName")


def merge_and_group_checklists(entries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    groups: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
    for entry in entries:
        key = tuple(entry.get(name) for name in _GROUP_FIELDS)
        group = groups.get(key)
        if group is None:
            group = {name: entry.get(name) for name in _GROUP_FIELDS}
            group.update(
                {
                    "status": entry.get("status"),
                    "plType": entry.get("plType"),
                    "title": entry.get("title"),
                    "checkList": [],
                }
            )
            groups[key] = group
        group["checkList"].extend(copy.deepcopy(entry.get("checkList") or []))
    return list(groups.values())


def _checklist_entry(customer_id: str, switchgear: Dict[str, Any], cb: Dict[str, Any]) -> Dict[str, Any]:
    schedule = str(cb.get("planshudule") or "")
    return {
        "checkListType": schedule,
        "date": format_iso(cb.get("planEndDate")),
        "plannedDate": format_iso(cb.get("planStartDate")),
        "checkList": [{"description": cb.get("pms_des"), "isCompleted": False}],
        "custId": customer_id,
        "deviceName": switchgear.get("switchgearName"),
        "status": "pending",
        "plType": _SCHEDULE_SUFFIX.sub("", schedule),
        "id": switchgear.get("switchgearId"),
        "title": f"{switchgear.get('switchgearName')}-{schedule}",
    }


def build_plan_checklists(customer_id: str, mapping_nodes: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    entries = [
        _checklist_entry(customer_id, switchgear, cb)
        for switchgear in mapping_nodes or []
        for cb in switchgear.get("cbs") or []
    ]
    result: List[Dict[str, Any]] = []
    for group in merge_and_group_checklists(entries):
        result.extend(expand_recurrences(group))
    return result


# ---------------------------------------------------------------------------
# Plan listings
# ---------------------------------------------------------------------------


def filter_plan_schedules(
    switchgears: Sequence[Dict[str, Any]],
    switchgear_id: Any = None,
    planshudule: Optional[str] = None,
    on_date: Any = None,
) -> List[Dict[str, Any]]:
    """Switchgears (and their CBs) matching the given id, schedule tag and active date."""
    day = to_date(on_date) if on_date else None
    wanted = normalize_key(switchgear_id) if switchgear_id else None
    out = []
    for switchgear in copy.deepcopy(list(switchgears or [])):
        if wanted is not None and _MAPPING_LEVELS[0].key_of(switchgear) != wanted:
            continue
        cbs = switchgear.get("cbs") or []
        if planshudule:
            cbs = [cb for cb in cbs if cb.get("planshudule") == planshudule]
        if day is not None:
            cbs = [cb for cb in cbs if to_date(cb.get("planStartDate")) <= day <= to_date(cb.get("planEndDate"))]
        switchgear["cbs"] = cbs
        out.append(switchgear)
    return out


def overlay_execution_fields(
    cb: Dict[str, Any],
    calendar_nodes: Sequence[Dict[str, Any]],
    configure_ts: Any = None,
) -> List[Dict[str, Any]]:
    """The CB's tasks with each subtask decorated by its recorded execution fields."""
    tasks = copy.deepcopy(cb.get("tasks") or [])
    for task in tasks:
        for subtask in task.get("subTasks") or []:
            records = execution_records(
                calendar_nodes, cb.get("taskId"), task.get("mainTask"), subtask.get("name"), configure_ts
            )
            record = records[0] if records else {}
            for name in EXECUTION_FIELDS:
                value = record.get(name)
                subtask[name] = "" if value is None else value
    return tasks


def group_subtasks_by_schedule(tasks: Sequence[Dict[str, Any]], plan_schedule: str) -> List[Dict[str, Any]]:
    grouped = []
    for task in tasks or []:
        subtasks = [s for s in task.get("subTasks") or [] if s.get("planSchedule") == plan_schedule]
        if subtasks:
            grouped.append(
                {
                    "id": task.get("id"),
                    "mainTask": task.get("mainTask"),
                    "subTasks": [{"name": s.get("name"), "timeDuration": s.get("timeDuration")} for s in subtasks],
                }
            )
    return grouped


def cb_schedule_summary(switchgear: Dict[str, Any], cb_name: str, today: Optional[dt.date] = None) -> Dict[str, Any]:
    today_iso = (today or dt.date.today()).isoformat()
    matching = [cb for cb in switchgear.get("cbs") or [] if cb.get("cbname") == cb_name]
    schedules: List[Any] = []
    for cb in matching:
        if cb.get("planshudule") not in schedules:
            schedules.append(cb.get("planshudule"))
    return {
        "cbname": cb_name,
        "planshudule": schedules,
        "count": sum(1 for cb in matching if str(cb.get("creationDate") or "").startswith(today_iso)),
        "allCBsTaskID": [cb["taskId"] for cb in matching if cb.get("taskId")],
    }


def filter_calendar(
    configurations: Sequence[Dict[str, Any]],
    configure_ts: Any,
    switchgear_id: Any = None,
    task_id: Any = None,
    cbid: Any = None,
) -> List[Dict[str, Any]]:
    """One snapshot narrowed by switchgear, planned task and CB id; empty results raise ``NotFoundError``."""
    snapshot_level, sg_level, cb_level = _CALENDAR_LEVELS[0], _CALENDAR_LEVELS[1], _CALENDAR_LEVELS[2]
    wanted_ts = normalize_key(configure_ts)
    selected = [
        c for c in copy.deepcopy(list(configurations or [])) if isinstance(c, dict) and snapshot_level.key_of(c) == wanted_ts
    ]
    if not selected:
        raise NotFoundError(f"No configurations found for the given date: {configure_ts}.")

    if switchgear_id:
        wanted_sg = normalize_key(switchgear_id)
        for config in selected:
            config["switchgears"] = [sg for sg in config.get("switchgears") or [] if sg_level.key_of(sg) == wanted_sg]
        selected = [c for c in selected if c["switchgears"]]

    if task_id or cbid:
        def keep(cb: Dict[str, Any]) -> bool:
            if task_id and cb_level.key_of(cb) != normalize_key(task_id):
                return False
            return not cbid or _match_id(cb, "cbid", cbid)

        for config in selected:
            for switchgear in config.get("switchgears") or []:
                switchgear["cbs"] = [cb for cb in switchgear.get("cbs") or [] if keep(cb)]
            config["switchgears"] = [sg for sg in config.get("switchgears") or [] if sg.get("cbs")]
        selected = [c for c in selected if c["switchgears"]]

    if not selected:
        raise NotFoundError("No data found")
    return selected


# ---------------------------------------------------------------------------
# Joined per-switchgear view
# ---------------------------------------------------------------------------


def _match_id(node: Dict[str, Any], field_name: str, wanted: Any) -> bool:
    return normalize_key(node.get(field_name)) == normalize_key(wanted)


def _matching_switchgears(kind: SchemaKind, nodes: Iterable[Any], switchgear_id: Any) -> List[Dict[str, Any]]:
    return [sg for sg in nodes if isinstance(sg, dict) and Switchgear.from_node(kind, sg).matches(switchgear_id)]


def switchgear_bundle(
    switchgear_id: Any,
    calendar: Sequence[DocumentTree],
    config: Sequence[DocumentTree],
    mapping: Sequence[DocumentTree],
    cbid: Any = None,
    configure_ts: Any = None,
) -> Dict[str, Any]:
    """Join one switchgear's documents across the calendar, config and mapping tables.

    With ``cbid`` each table's entry is narrowed to that CB; the calendar is
    read from ``configure_ts`` or, when omitted, from the latest snapshot.
    """
    cal_configurations = []
    for tree in calendar:
        for snapshot in copy.deepcopy(tree.nodes):
            switchgears = _matching_switchgears(SchemaKind.CALENDAR, snapshot.get("switchgears") or [], switchgear_id)
            if switchgears:
                snapshot["switchgears"] = switchgears
                cal_configurations.append(snapshot)

    config_items = []
    for tree in config:
        item = tree.to_item()
        item["configswitchgears"] = _matching_switchgears(SchemaKind.CONFIG, tree.nodes, switchgear_id)
        if item["configswitchgears"]:
            config_items.append(copy.deepcopy(item))

    mapping_items = []
    for tree in mapping:
        item = tree.to_item()
        item["switchgears"] = _matching_switchgears(SchemaKind.MAPPING, tree.nodes, switchgear_id)
        if item["switchgears"]:
            mapping_items.append(copy.deepcopy(item))

    bundle: Dict[str, Any] = {
        "calConfigurations": cal_configurations,
        "configSwitchgears": config_items,
        "switchgearMappping": mapping_items,
    }
    if cbid in (None, ""):
        return bundle

    ts = configure_ts or latest_snapshot(cal_configurations)
    bundle["configure_Ts"] = ts
    bundle["calConfigurations"] = _first_cb(
        (
            cb
            for snapshot in cal_configurations
            if _match_id(snapshot, "configure_Ts", ts)
            for sg in snapshot["switchgears"]
            for cb in sg.get("cbs") or []
        ),
        "cbid",
        cbid,
        f"No CB found with ID: {cbid} under switchgear {switchgear_id} in configuration {ts}",
    )
    bundle["configSwitchgears"] = _first_cb(
        (cb for item in config_items for sg in item["configswitchgears"] for cb in sg.get("configuredCBs") or []),
        "id",
        cbid,
        f"No CB found with ID: {cbid} under switchgear {switchgear_id}",
    )
    bundle["switchgearMappping"] = _first_cb(
        (cb for item in mapping_items for sg in item["switchgears"] for cb in sg.get("cbs") or []),
        "cbid",
        cbid,
        f"No CB found with ID: {cbid} under switchgear {switchgear_id}",
    )
    return bundle


def _first_cb(cbs: Iterable[Dict[str, Any]], field_name: str, wanted: Any, missing: str) -> Dict[str, Any]:
    for cb in cbs:
        if _match_id(cb, field_name, wanted):
            return cb
    return {"success": False, "message": missing}


def snapshot_details(bundle: Dict[str, Any], cbid: Any = None, task_id: Any = None) -> Dict[str, Any]:
    """Pick CB details out of a stored bundle by config ``cbid`` and/or planned ``taskId``."""
    details: Dict[str, Any] = {}
    if cbid not in (None, ""):
        details["cbDetails"] = [
            cb
            for item in bundle.get("configSwitchgears") or []
            for sg in item.get("configswitchgears") or []
            for cb in sg.get("configuredCBs") or []
            if _match_id(cb, "id", cbid)
        ]
    if task_id not in (None, ""):
        calendar_cbs = [
            cb
            for snapshot in bundle.get("calConfigurations") or []
            for sg in snapshot.get("switchgears") or []
            for cb in sg.get("cbs") or []
            if _match_id(cb, "taskId", task_id)
        ]
        mapping_cbs = [
            cb
            for item in bundle.get("switchgearMappping") or []
            for sg in item.get("switchgears") or []
            for cb in sg.get("cbs") or []
            if _match_id(cb, "taskId", task_id)
        ]
        missing = f"No CB found with id: {task_id}"
        details["calConfigurations"] = calendar_cbs or missing
        details["switchgearMappping"] = mapping_cbs or missing
    return details
