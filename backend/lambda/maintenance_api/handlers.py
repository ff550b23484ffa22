"""handlers.py — HTTP route handlers.

Each handler loads the documents it needs through ``DocumentStore``, runs the
merge or aggregation step and shapes the JSON response. Failures are raised as
``MaintenanceError`` subclasses and mapped to responses by ``lambda_handler``.
"""
from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from aggregation import (
    build_plan_checklists,
    cb_schedule_summary,
    filter_calendar,
    filter_plan_schedules,
    group_by_plan_type,
    group_subtasks_by_schedule,
    overlay_execution_fields,
    snapshot_details,
    switchgear_bundle,
)
from config import SWITCHGEAR_TYPE_TABLE, logger
from document_tree import DocumentTree, SchemaKind, format_iso, normalize_key, to_triple
from errors import NotFoundError, ValidationError
from http_utils import _binary_response, _json_body, _query_params, _response
from merge_engine import (
    delete_preventive_task,
    merge_calendar,
    merge_mapping,
    merge_preventive_tasks,
    merge_switchgear_configs,
    remove_config_cb,
    remove_planned_cb,
    store_snapshot_bundle,
    update_config_cb,
    update_planned_cb,
    update_preventive_task,
)
from pdf_export import pdf_filename, render_cb_details
from persistence import DocumentStore
from serialization import _now_z

__all__ = [
    "_handle_calendar_tasks",
    "_handle_create_preventive_tasks",
    "_handle_customer_details",
    "_handle_delete_planned_cb",
    "_handle_delete_preventive_task",
    "_handle_fetch_all_data",
    "_handle_get_calendar_task",
    "_handle_get_mapped_switchgear",
    "_handle_get_preventive_tasks",
    "_handle_get_subtasks",
    "_handle_get_switchgear_config",
    "_handle_insert_map_data",
    "_handle_list_switchgear_types",
    "_handle_mapping_data",
    "_handle_plan_schedules",
    "_handle_plan_summary",
    "_handle_plans_by_customer",
    "_handle_post_switchgear_config",
    "_handle_cb_details_pdf",
    "_handle_remove_cb",
    "_handle_save_all_data",
    "_handle_store_calendar_task",
    "_handle_task_details",
    "_handle_update_cb",
    "_handle_update_planned_cb",
    "_handle_update_preventive_task",
]

_CONFIGURED_CB_FIELDS = ("name", "id", "serialNo", "brand", "model", "joNoMfgDate", "location", "configurations")
_PLANNED_CB_UPDATE_FIELDS = ("fromDate", "toDate", "tasks")
_PLAN_SUMMARY_PARAMS = ("planType", "scheduleType", "configure_Ts")


def _required(values: Dict[str, Any], *names: str) -> None:
    missing = [n for n in names if values.get(n) in (None, "", [], {})]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing=missing)


def _planned_cb_view(cb: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "taskId": cb.get("taskId"),
        "cbname": cb.get("cbname"),
        "cbid": cb.get("cbid"),
        "pms_des": cb.get("pms_des"),
        "planshudule": cb.get("planshudule"),
        "fromDate": cb.get("planStartDate"),
        "toDate": cb.get("planEndDate"),
        "tasks": cb.get("tasks"),
    }


def _find_named_cb(tree: DocumentTree, switchgear_id: str, cb_name: str, task_id: str) -> Dict[str, Any]:
    try:
        cb = tree.find(switchgear_id, task_id)
    except NotFoundError as exc:
        if exc.details.get("level") == "switchgear":
            raise NotFoundError("Switchgear not found", switchgear_id=switchgear_id) from exc
        raise NotFoundError("CB or Task not found", cbname=cb_name, taskId=task_id) from exc
    if cb.get("cbname") != cb_name:
        raise NotFoundError("CB or Task not found", cbname=cb_name, taskId=task_id)
    return cb


# ---------------------------------------------------------------------------
# Switchgear types and configuration
# ---------------------------------------------------------------------------


def _handle_list_switchgear_types(store: DocumentStore, event: Dict[str, Any]) -> Dict[str, Any]:
    if not store.table_exists(SWITCHGEAR_TYPE_TABLE):
        raise NotFoundError(f"Table {SWITCHGEAR_TYPE_TABLE} does not exist.")
    items = store.scan(SWITCHGEAR_TYPE_TABLE)
    if not items:
        raise NotFoundError("No switchgears found.")
    return _response(200, items)


def _handle_post_switchgear_config(
    store: DocumentStore,
    event: Dict[str, Any],
    customer_id: str,
    name: str,
) -> Dict[str, Any]:
    body = _json_body(event)
    configs = body.get("configswitchgears")
    if not isinstance(configs, list) or not configs:
        raise ValidationError("'configswitchgears' is required and must be a non-empty array.")

    store.ensure_table(SchemaKind.CONFIG)
    tree = store.load_or_new(customer_id, SchemaKind.CONFIG)
    updated = merge_switchgear_configs(tree, configs)
    updated.attributes["name"] = name
    updated.attributes["timestamp"] = _now_z()
    store.save(updated)
    logger.info("[INFO] appended %d switchgear config(s) for customer=%s", len(configs), customer_id)
    return _response(201, {"message": "Data successfully appended and saved.", "updatedConfigs": updated.nodes})


def _handle_get_switchgear_config(
    store: DocumentStore,
    event: Dict[str, Any],
    customer_id: str,
    switchgear_id: str,
) -> Dict[str, Any]:
    tree = store.require(customer_id, SchemaKind.CONFIG, "No switchgear configurations found.")
    switchgear = tree.find(switchgear_id)
    cbs = [{name: cb.get(name) for name in _CONFIGURED_CB_FIELDS} for cb in switchgear.get("configuredCBs") or []]
    return _response(200, {"configuredCB": cbs})


def _handle_update_cb(
    store: DocumentStore,
    event: Dict[str, Any],
    customer_id: str,
    switchgear_id: str,
    cb_id: str,
) -> Dict[str, Any]:
    body = _json_body(event)
    _required(body, "updatedCB")
    store.ensure_table(SchemaKind.CONFIG)
    tree = store.require(customer_id, SchemaKind.CONFIG, "Switchgear configuration not found.")
    updated, cb = update_config_cb(tree, switchgear_id, cb_id, body["updatedCB"])
    store.save(updated)
    return _response(
        200,
        {
            "message": "Circuit breaker updated successfully.",
            "updatedCB": cb,
            "updatedConfigSwitchgears": updated.nodes,
        },
    )


def _handle_remove_cb(
    store: DocumentStore,
    event: Dict[str, Any],
    customer_id: str,
    switchgear_id: str,
    cb_id: str,
) -> Dict[str, Any]:
    tree = store.require(customer_id, SchemaKind.CONFIG, "Switchgear configuration not found.")
    updated = remove_config_cb(tree, switchgear_id, cb_id)
    store.save(updated)
    return _response(
        200,
        {"message": "Circuit breaker deleted successfully.", "updatedConfigSwitchgears": updated.nodes},
    )


def _handle_cb_details_pdf(
    store: DocumentStore,
    event: Dict[str, Any],
    customer_id: str,
    switchgear_id: str,
    cb_id: str,
) -> Dict[str, Any]:
    tree = store.require(customer_id, SchemaKind.CONFIG, "Switchgear configuration not found.")
    cb = tree.find(switchgear_id, cb_id)
    return _binary_response(200, render_cb_details(switchgear_id, cb), "application/pdf", pdf_filename(switchgear_id, cb_id))


# ---------------------------------------------------------------------------
# Preventive task sets
# ---------------------------------------------------------------------------


def _handle_create_preventive_tasks(store: DocumentStore, event: Dict[str, Any]) -> Dict[str, Any]:
    body = _json_body(event)
    _required(body, "customer_id", "customer_name")
    if not isinstance(body.get("tasks"), list):
        raise ValidationError("'tasks' is required and must be an array.")

    store.ensure_table(SchemaKind.PREVENTIVE)
    customer_id = str(body["customer_id"])
    tree = store.load_or_new(customer_id, SchemaKind.PREVENTIVE)
    updated = merge_preventive_tasks(tree, body["tasks"])
    updated.attributes["customer_name"] = body["customer_name"]
    updated.attributes["timestamp"] = _now_z()
    store.save(updated)
    return _response(201, {"message": "Tasks successfully saved.", "tasks": updated.nodes})


def _handle_get_preventive_tasks(store: DocumentStore, event: Dict[str, Any], customer_id: str) -> Dict[str, Any]:
    tree = store.require(customer_id, SchemaKind.PREVENTIVE, "Customer's task not found.")
    return _response(200, {"message": "Task showed successfully.", "configData": tree.nodes})


def _handle_update_preventive_task(store: DocumentStore, event: Dict[str, Any], customer_id: str) -> Dict[str, Any]:
    body = _json_body(event)
    _required(body, "tasks_id", "updates")
    store.ensure_table(SchemaKind.PREVENTIVE)
    tree = store.require(customer_id, SchemaKind.PREVENTIVE, "Customer's task not found.")
    updated, _task = update_preventive_task(tree, body["tasks_id"], body["updates"])
    store.save(updated)
    return _response(200, {"message": "Task or subtask updated successfully.", "updatedData": updated.to_item()})


def _handle_delete_preventive_task(store: DocumentStore, event: Dict[str, Any], customer_id: str) -> Dict[str, Any]:
    body = _json_body(event)
    _required(body, "tasks_id")
    tree = store.require(customer_id, SchemaKind.PREVENTIVE, "Customer's task not found.")
    subtask_name = body.get("subTask_name")
    updated = delete_preventive_task(tree, body["tasks_id"], subtask_name)
    store.save(updated)
    message = "Subtask deleted successfully." if subtask_name is not None else "Task deleted successfully."
    return _response(200, {"message": message, "updatedData": updated.to_item()})


def _handle_get_subtasks(store: DocumentStore, event: Dict[str, Any]) -> Dict[str, Any]:
    body = _json_body(event)
    _required(body, "customer_id", "planSchedule")
    store.ensure_table(SchemaKind.PREVENTIVE)
    tree = store.require(str(body["customer_id"]), SchemaKind.PREVENTIVE, "Customer not found.")
    if not tree.nodes:
        raise NotFoundError("No tasks found for the customer.")
    grouped = group_subtasks_by_schedule(tree.nodes, body["planSchedule"])
    if not grouped:
        raise NotFoundError("No subtasks found with the specified planSchedule.")
    return _response(200, grouped)


# ---------------------------------------------------------------------------
# Plan mapping
# ---------------------------------------------------------------------------


def _handle_insert_map_data(store: DocumentStore, event: Dict[str, Any]) -> Dict[str, Any]:
    body = _json_body(event)
    _required(body, "customer_id")
    if not isinstance(body.get("switchgears"), list):
        raise ValidationError("'switchgears' is required and must be an array.")

    store.ensure_table(SchemaKind.MAPPING)
    tree = store.load_or_new(str(body["customer_id"]), SchemaKind.MAPPING)
    updated = merge_mapping(tree, body["switchgears"])
    store.save(updated)
    return _response(200, {"message": "Data inserted/updated successfully!", "data": updated.to_item()})


def _handle_mapping_data(store: DocumentStore, event: Dict[str, Any]) -> Dict[str, Any]:
    params = _query_params(event)
    _required(params, "customer_id")
    customer_id = params["customer_id"]
    device_id = params.get("device_id")
    cb_name = params.get("cbName")

    config = store.require(
        customer_id,
        SchemaKind.CONFIG,
        "No data found for the given customer_id in the switchgear configuration table.",
    )
    if not device_id:
        switchgears = [{"id": sg.switchgear_id, "name": sg.name} for sg in config.switchgears()]
        return _response(
            200,
            {"message": "Switchgears fetched successfully.", "customer_id": customer_id, "switchgears": switchgears},
        )

    device = config.find(device_id)
    if not cb_name:
        cb_names = [{"Cb_Name": cb.get("name"), "Cb_Id": cb.get("id")} for cb in device.get("configuredCBs") or []]
        return _response(200, {"message": "Circuit breaker names for the device:", "cbNames": cb_names})

    mapping = store.load(customer_id, SchemaKind.MAPPING)
    if mapping is None:
        return _response(
            200,
            {"message": "No mapping data found for the given customer_id.", "count": 0, "allCBsTaskID": []},
        )
    matches = mapping.find_all(device_id)
    if not matches:
        return _response(
            200,
            {
                "message": f"No CB's planshudule found with name '{cb_name}' in the switchgears",
                "count": 0,
                "allCBsTaskID": [],
            },
        )
    summary = cb_schedule_summary(matches[0], cb_name)
    return _response(200, {"message": "CB planshudule fetched successfully.", **summary})


def _handle_get_mapped_switchgear(
    store: DocumentStore,
    event: Dict[str, Any],
    customer_id: str,
    switchgear_id: str,
) -> Dict[str, Any]:
    task_id = _query_params(event).get("taskId")
    store.ensure_table(SchemaKind.MAPPING)
    tree = store.require(customer_id, SchemaKind.MAPPING, "Customer don't mapped yet")
    switchgear = tree.find(switchgear_id)
    if task_id:
        cb = tree.find(switchgear_id, task_id)
        return _response(200, {"message": "Task details fetched successfully.", "task": _planned_cb_view(cb)})

    view = {
        "switchgearName": switchgear.get("switchgearName"),
        "switchgearId": switchgear.get("switchgearId"),
        "cbs": [_planned_cb_view(cb) for cb in switchgear.get("cbs") or []],
    }
    return _response(200, {"message": "Mapped Switchgear fetched successfully.", "switchgear": view})


def _handle_update_planned_cb(
    store: DocumentStore,
    event: Dict[str, Any],
    customer_id: str,
    switchgear_id: str,
    task_id: str,
) -> Dict[str, Any]:
    body = _json_body(event)
    invalid = [name for name in body if name not in _PLANNED_CB_UPDATE_FIELDS]
    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", invalidFields=invalid)

    store.ensure_table(SchemaKind.MAPPING)
    tree = store.require(customer_id, SchemaKind.MAPPING, "Customer not found")
    updated, cb = update_planned_cb(
        tree,
        switchgear_id,
        task_id,
        start=body.get("fromDate"),
        end=body.get("toDate"),
        tasks=body.get("tasks"),
    )
    store.save(updated)
    return _response(200, {"message": "Task data updated successfully.", "updatedTask": cb})


def _handle_delete_planned_cb(
    store: DocumentStore,
    event: Dict[str, Any],
    customer_id: str,
    switchgear_id: str,
    task_id: str,
) -> Dict[str, Any]:
    tree = store.require(customer_id, SchemaKind.MAPPING, "Customer not found")
    updated = remove_planned_cb(tree, switchgear_id, task_id)
    store.save(updated)
    return _response(
        200,
        {"message": f"Circuit Breaker '{task_id}' deleted successfully from Switchgear '{switchgear_id}'."},
    )


# ---------------------------------------------------------------------------
# Plan summaries and calendars
# ---------------------------------------------------------------------------


def _handle_plan_summary(store: DocumentStore, event: Dict[str, Any], table: str, customer_id: str) -> Dict[str, Any]:
    params = _query_params(event)
    unexpected = [name for name in params if name not in _PLAN_SUMMARY_PARAMS]
    if unexpected:
        raise ValidationError("Unexpected parameters", unexpectedParams=unexpected)
    _required(params, "planType")
    logger.info("[INFO] plan summary table=%s customer=%s planType=%s", table, customer_id, params["planType"])

    mapping = store.require(customer_id, SchemaKind.MAPPING, "Customer not found in Preventive table")
    config = store.require(customer_id, SchemaKind.CONFIG, "Customer not found in Configuration table")
    calendar = store.load(customer_id, SchemaKind.CALENDAR)
    switchgears = group_by_plan_type(
        params["planType"],
        mapping.nodes,
        config.nodes,
        calendar.nodes if calendar else [],
        schedule_type=params.get("scheduleType"),
        configure_ts=params.get("configure_Ts"),
    )
    return _response(200, {"customer_id": mapping.customer_id, "switchgears": switchgears})


def _handle_plan_schedules(store: DocumentStore, event: Dict[str, Any]) -> Dict[str, Any]:
    params = _query_params(event)
    _required(params, "customer_id")
    customer_id = params["customer_id"]
    on_date = params.get("planstartDate")
    if on_date:
        to_triple(on_date)

    trees = store.query(customer_id, SchemaKind.MAPPING)
    if not trees:
        raise NotFoundError("Customer not found")
    switchgears = filter_plan_schedules(
        trees[0].nodes,
        switchgear_id=params.get("switchgearId"),
        planshudule=params.get("planshudule"),
        on_date=on_date,
    )
    return _response(200, {"customer_id": customer_id, "switchgears": switchgears})


def _handle_calendar_tasks(store: DocumentStore, event: Dict[str, Any]) -> Dict[str, Any]:
    params = _query_params(event)
    _required(params, "customer_id", "switchgearID", "cbname", "taskid")
    customer_id = params["customer_id"]
    mapping = store.require(customer_id, SchemaKind.MAPPING, "Customer not found")
    cb = _find_named_cb(mapping, params["switchgearID"], params["cbname"], params["taskid"])
    calendar = store.load(customer_id, SchemaKind.CALENDAR)
    tasks = overlay_execution_fields(cb, calendar.nodes if calendar else [], params.get("configure_Ts"))
    return _response(200, {"tasks": tasks})


def _handle_task_details(store: DocumentStore, event: Dict[str, Any]) -> Dict[str, Any]:
    params = _query_params(event)
    _required(params, "customer_id", "switchgearId", "cbname", "taskId")
    customer_id = params["customer_id"]
    mapping = store.require(customer_id, SchemaKind.MAPPING, "Customer not found")
    cb = _find_named_cb(mapping, params["switchgearId"], params["cbname"], params["taskId"])
    switchgear = mapping.find(params["switchgearId"])
    return _response(
        200,
        {
            "planshudule": cb.get("planshudule"),
            "creationDate": cb.get("creationDate"),
            "planStartDate": f"{format_iso(cb.get('planStartDate'))}T00:00:00.000Z",
            "checkList": [{"description": cb.get("pms_des") or cb.get("planshudule"), "isCompleted": False}],
            "customer_id": customer_id,
            "switchgearName": switchgear.get("switchgearName") or "",
            "switchgearId": switchgear.get("switchgearId"),
        },
    )


def _handle_store_calendar_task(store: DocumentStore, event: Dict[str, Any]) -> Dict[str, Any]:
    body = _json_body(event)
    _required(body, "customer_id")
    if not isinstance(body.get("configurations"), list):
        raise ValidationError("'configurations' is required and must be an array.")

    store.ensure_table(SchemaKind.CALENDAR)
    tree = store.load_or_new(str(body["customer_id"]), SchemaKind.CALENDAR)
    updated = merge_calendar(tree, body["configurations"])
    store.save(updated)
    return _response(200, {"message": "Data stored successfully."})


def _handle_get_calendar_task(
    store: DocumentStore,
    event: Dict[str, Any],
    customer_id: str,
    configure_ts: str,
    switchgear_id: Optional[str] = None,
    task_id: Optional[str] = None,
    cbid: Optional[str] = None,
) -> Dict[str, Any]:
    tree = store.require(customer_id, SchemaKind.CALENDAR, "Customer not found.")
    configurations = filter_calendar(tree.nodes, configure_ts, switchgear_id, task_id, cbid)
    return _response(200, {"customer_id": tree.customer_id, "configurations": configurations})


def _handle_plans_by_customer(store: DocumentStore, event: Dict[str, Any], customer_id: str) -> Dict[str, Any]:
    trees = store.query(customer_id, SchemaKind.MAPPING)
    if not trees:
        raise NotFoundError("Customer not found")
    plans: List[Dict[str, Any]] = []
    for tree in trees:
        plans.extend(build_plan_checklists(tree.customer_id, tree.nodes))
    if not plans:
        raise NotFoundError("No tasks found for the given customer")
    return _response(200, plans)


# ---------------------------------------------------------------------------
# Joined switchgear snapshots
# ---------------------------------------------------------------------------


def _load_bundle(store: DocumentStore, customer_id: str, switchgear_id: str, **kwargs: Any) -> Dict[str, Any]:
    return switchgear_bundle(
        switchgear_id,
        store.query(customer_id, SchemaKind.CALENDAR),
        store.query(customer_id, SchemaKind.CONFIG),
        store.query(customer_id, SchemaKind.MAPPING),
        **kwargs,
    )


def _handle_fetch_all_data(
    store: DocumentStore,
    event: Dict[str, Any],
    customer_id: str,
    switchgear_id: str,
) -> Dict[str, Any]:
    params = _query_params(event)
    bundle = _load_bundle(
        store,
        customer_id,
        switchgear_id,
        cbid=params.get("cbid"),
        configure_ts=params.get("configure_Ts"),
    )
    return _response(200, {"customer_id": customer_id, "switchgearID": switchgear_id, **bundle})


def _handle_save_all_data(
    store: DocumentStore,
    event: Dict[str, Any],
    customer_id: str,
    switchgear_id: str,
) -> Dict[str, Any]:
    store.ensure_table(SchemaKind.CUSTOMER_DATA)
    bundle = _load_bundle(store, customer_id, switchgear_id)
    snapshot = {"switchgearID": switchgear_id, "configure_Ts": dt.date.today().isoformat(), **bundle}
    tree = store.load_or_new(customer_id, SchemaKind.CUSTOMER_DATA)
    updated = store_snapshot_bundle(tree, snapshot)
    store.save(updated)
    return _response(201, {"message": "Data successfully saved.", "data": updated.to_item()})


def _handle_customer_details(
    store: DocumentStore,
    event: Dict[str, Any],
    customer_id: str,
    switchgear_id: str,
) -> Dict[str, Any]:
    params = _query_params(event)
    tree = store.require(customer_id, SchemaKind.CUSTOMER_DATA, "Customer not found.")
    wanted = normalize_key(switchgear_id)
    bundle = next((b for b in tree.nodes if normalize_key(b.get("switchgearID")) == wanted), None)
    if bundle is None:
        raise NotFoundError("Switchgear not found.", switchgearID=switchgear_id)

    cbid, task_id = params.get("cbid"), params.get("taskId")
    if cbid or task_id:
        return _response(
            200,
            {
                "message": "Successfully fetched customer details",
                "allTablesData": snapshot_details(bundle, cbid=cbid, task_id=task_id),
            },
        )
    return _response(200, {"switchgearResponse": bundle})
