"""lambda_function.py — Preventive maintenance API Lambda entry point.

Routes API Gateway requests for switchgear configuration, preventive task
sets, plan mappings and calendar execution snapshots. Every route except CORS
preflight requires ``Authorization: Bearer <jwt>`` (HS256, ``JWT_SECRET``) or
the internal service key header.

Environment:
    DYNAMODB_REGION            default ap-southeast-1
    DYNAMODB_ENDPOINT_URL      optional, e.g. http://localhost:8000
    SWITCHGEAR_CONFIG_TABLE    default switchgearConfig_Store
    MAPPING_TABLE              default Preventive_mappping_Storage
    CALENDAR_TABLE             default calander_Tasks_Update
    PREVENTIVE_TASK_TABLE      default Preventive_mentainance_Storage
    CUSTOMER_DATA_TABLE        default customer_data_table
    SWITCHGEAR_TYPE_TABLE      default switchgearType
    CONCURRENCY_POLICY         last_writer_wins | optimistic_token
    JWT_SECRET / JWT_ALGORITHM
    MAINTENANCE_INTERNAL_API_KEY(S)
    CORS_ORIGIN                default *
"""
from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple
from urllib.parse import unquote

from auth import _authenticate
from config import StoreConfig, logger
from errors import MaintenanceError
from handlers import (
    _handle_calendar_tasks,
    _handle_cb_details_pdf,
    _handle_create_preventive_tasks,
    _handle_customer_details,
    _handle_delete_planned_cb,
    _handle_delete_preventive_task,
    _handle_fetch_all_data,
    _handle_get_calendar_task,
    _handle_get_mapped_switchgear,
    _handle_get_preventive_tasks,
    _handle_get_subtasks,
    _handle_get_switchgear_config,
    _handle_insert_map_data,
    _handle_list_switchgear_types,
    _handle_mapping_data,
    _handle_plan_schedules,
    _handle_plan_summary,
    _handle_plans_by_customer,
    _handle_post_switchgear_config,
    _handle_remove_cb,
    _handle_save_all_data,
    _handle_store_calendar_task,
    _handle_task_details,
    _handle_update_cb,
    _handle_update_planned_cb,
    _handle_update_preventive_task,
)
from http_utils import _error, _path_method, _response
from persistence import DocumentStore

_SEG = r"([^/]+)"

_ROUTES: List[Tuple[str, Pattern[str], Callable[..., Dict[str, Any]]]] = [
    ("GET", re.compile(r"/switchgears"), _handle_list_switchgear_types),
    ("POST", re.compile(rf"/switchgearConfig/{_SEG}/{_SEG}"), _handle_post_switchgear_config),
    ("GET", re.compile(rf"/switchgearConfig/{_SEG}/{_SEG}"), _handle_get_switchgear_config),
    ("PUT", re.compile(rf"/updateCB/{_SEG}/{_SEG}/{_SEG}"), _handle_update_cb),
    ("DELETE", re.compile(rf"/removeCB/{_SEG}/{_SEG}/{_SEG}"), _handle_remove_cb),
    ("GET", re.compile(rf"/cbDetails/{_SEG}/{_SEG}/{_SEG}/pdf"), _handle_cb_details_pdf),
    ("POST", re.compile(r"/preventivetask"), _handle_create_preventive_tasks),
    ("GET", re.compile(rf"/preventivetask/{_SEG}"), _handle_get_preventive_tasks),
    ("PUT", re.compile(rf"/preventivetask/{_SEG}"), _handle_update_preventive_task),
    ("DELETE", re.compile(rf"/preventivetask/{_SEG}"), _handle_delete_preventive_task),
    ("POST", re.compile(r"/getSubtasks"), _handle_get_subtasks),
    ("POST", re.compile(r"/insertmapData"), _handle_insert_map_data),
    ("GET", re.compile(r"/getMappingData"), _handle_mapping_data),
    ("GET", re.compile(rf"/switchgear/{_SEG}/{_SEG}"), _handle_get_mapped_switchgear),
    ("PUT", re.compile(rf"/switchgear/{_SEG}/{_SEG}/{_SEG}"), _handle_update_planned_cb),
    ("DELETE", re.compile(rf"/switchgear/{_SEG}/{_SEG}/{_SEG}"), _handle_delete_planned_cb),
    ("GET", re.compile(rf"/testpreservice/{_SEG}/{_SEG}"), _handle_plan_summary),
    ("GET", re.compile(r"/api/planshadules"), _handle_plan_schedules),
    ("GET", re.compile(r"/Calandertasks"), _handle_calendar_tasks),
    ("GET", re.compile(r"/getTaskDetails"), _handle_task_details),
    ("POST", re.compile(r"/storecalTask"), _handle_store_calendar_task),
    (
        "GET",
        re.compile(rf"/getcalTask/{_SEG}/{_SEG}(?:/{_SEG})?(?:/{_SEG})?(?:/{_SEG})?"),
        _handle_get_calendar_task,
    ),
    ("GET", re.compile(rf"/getPlansByCustomer/{_SEG}"), _handle_plans_by_customer),
    ("GET", re.compile(rf"/fetchallData/{_SEG}/{_SEG}"), _handle_fetch_all_data),
    ("POST", re.compile(rf"/saveAllData/{_SEG}/{_SEG}"), _handle_save_all_data),
    ("GET", re.compile(rf"/customerdetails/{_SEG}/{_SEG}"), _handle_customer_details),
]

_store: Optional[DocumentStore] = None


def _get_store() -> DocumentStore:
    global _store
    if _store is None:
        _store = DocumentStore(StoreConfig.from_env())
    return _store


def _match_route(method: str, path: str) -> Tuple[Optional[Callable[..., Dict[str, Any]]], List[Optional[str]]]:
    normalized = path.rstrip("/") or "/"
    for route_method, pattern, handler in _ROUTES:
        if route_method != method:
            continue
        match = pattern.fullmatch(normalized)
        if match:
            return handler, [unquote(g) if g is not None else None for g in match.groups()]
    return None, []


def lambda_handler(event: Dict[str, Any], _context: Any) -> Dict[str, Any]:
    method, path = _path_method(event)

    if method == "OPTIONS":
        return _response(200, {"success": True})

    logger.info("[INFO] route method=%s path=%s", method, path)

    # Auth all other routes.
    _claims, auth_err = _authenticate(event)
    if auth_err:
        return auth_err

    handler, params = _match_route(method, path)
    if handler is None:
        return _error(404, f"Unsupported route: {method} {path}")

    try:
        return handler(_get_store(), event, *params)
    except MaintenanceError as exc:
        if exc.status_code >= 500:
            logger.error("[ERROR] %s %s failed: %s", method, path, exc.message)
        else:
            logger.warning("[WARNING] %s %s rejected: %s", method, path, exc.message)
        return _error(exc.status_code, exc.message, code=exc.code, **exc.details)
    except ValueError as exc:
        logger.warning("[WARNING] %s %s rejected: %s", method, path, exc)
        return _error(400, str(exc))
    except Exception as exc:
        logger.exception("[ERROR] %s %s failed unexpectedly", method, path)
        return _error(500, f"Internal server error: {exc}")
