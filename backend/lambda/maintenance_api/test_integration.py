import importlib.util
import json
import os
import pathlib
import sys
import uuid

import pytest


if os.environ.get("RUN_DYNAMODB_INTEGRATION") != "1":
    pytest.skip(
        "Set RUN_DYNAMODB_INTEGRATION=1 (and DYNAMODB_ENDPOINT_URL for DynamoDB Local) to run store integration tests.",
        allow_module_level=True,
    )

sys.path.insert(0, os.path.dirname(__file__))

MODULE_PATH = pathlib.Path(__file__).with_name("lambda_function.py")
SPEC = importlib.util.spec_from_file_location("maintenance_lambda_integration", MODULE_PATH)
maintenance_lambda = importlib.util.module_from_spec(SPEC)
assert SPEC and SPEC.loader
sys.modules[SPEC.name] = maintenance_lambda
SPEC.loader.exec_module(maintenance_lambda)

import auth  # noqa: E402


def _response_body(response: dict) -> dict:
    return json.loads(response["body"])


def _event(method: str, path: str, payload=None, query=None) -> dict:
    event = {
        "requestContext": {"http": {"method": method, "path": path}},
        "rawPath": path,
        "headers": {"X-Maintenance-Internal-Key": "integration-key"},
        "queryStringParameters": query or {},
    }
    if payload is not None:
        event["body"] = json.dumps(payload)
    return event


@pytest.fixture
def customer_id(monkeypatch):
    monkeypatch.setattr(auth, "MAINTENANCE_INTERNAL_API_KEYS", ("integration-key",))
    customer = f"it-{uuid.uuid4().hex[:12]}"
    store = maintenance_lambda._get_store()
    kinds = ("config", "mapping", "calendar", "preventive", "customer_data")
    for kind in kinds:
        store.ensure_table(kind)
    yield customer
    for kind in kinds:
        store.client.delete_item(TableName=store.table_name(kind), Key={"customer_id": {"S": customer}})


def test_config_append_then_duplicate_is_rejected(customer_id):
    payload = {"configswitchgears": [{"id": "SG1", "name": "Main", "configuredCBs": [{"id": 1, "name": "A"}]}]}
    resp = maintenance_lambda.lambda_handler(_event("POST", f"/switchgearConfig/{customer_id}/Plant", payload), None)
    assert resp["statusCode"] == 201

    payload = {"configswitchgears": [{"id": "SG1", "configuredCBs": [{"id": 2, "name": "B"}]}]}
    resp = maintenance_lambda.lambda_handler(_event("POST", f"/switchgearConfig/{customer_id}/Plant", payload), None)
    assert resp["statusCode"] == 201

    resp = maintenance_lambda.lambda_handler(_event("POST", f"/switchgearConfig/{customer_id}/Plant", payload), None)
    assert resp["statusCode"] == 409

    resp = maintenance_lambda.lambda_handler(_event("GET", f"/switchgearConfig/{customer_id}/SG1"), None)
    assert [cb["name"] for cb in _response_body(resp)["configuredCB"]] == ["A", "B"]


def test_mapping_summary_round_trip(customer_id):
    config = {"configswitchgears": [{"id": "SG1", "name": "Main", "configuredCBs": [{"id": 1, "name": "A"}]}]}
    mapping = {
        "customer_id": customer_id,
        "switchgears": [
            {
                "switchgearId": "SG1",
                "switchgearName": "Main",
                "cbs": [
                    {
                        "taskId": "T1",
                        "cbid": 1,
                        "cbname": "A",
                        "planshudule": "Monthly_10",
                        "planStartDate": {"year": 2099, "month": 1, "day": 1},
                        "planEndDate": {"year": 2099, "month": 1, "day": 31},
                        "tasks": [{"mainTask": "Inspect", "subTasks": [{"name": "Visual"}, {"name": "Thermal"}]}],
                    }
                ],
            }
        ],
    }
    maintenance_lambda.lambda_handler(_event("POST", f"/switchgearConfig/{customer_id}/Plant", config), None)
    resp = maintenance_lambda.lambda_handler(_event("POST", "/insertmapData", mapping), None)
    assert resp["statusCode"] == 200

    resp = maintenance_lambda.lambda_handler(
        _event("GET", f"/testpreservice/mapping/{customer_id}", query={"planType": "Totalplan"}),
        None,
    )
    cb = _response_body(resp)["switchgears"][0]["cbs"][0]
    assert (cb["totalPlan"], cb["pendingPlan"], cb["completePlan"]) == (3, 2, 0)
    assert cb["location"] == "Unknown Location"
