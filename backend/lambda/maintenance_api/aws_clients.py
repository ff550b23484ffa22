"""aws_clients.py — Lazily created DynamoDB client."""
from __future__ import annotations

import boto3
from botocore.config import Config

from config import DYNAMODB_ENDPOINT_URL, DYNAMODB_REGION

__all__ = [
    "_ddb",
    "_get_ddb",
]

# ---------------------------------------------------------------------------
# AWS client singletons
# ---------------------------------------------------------------------------

_ddb = None


def _get_ddb():
    global _ddb
    if _ddb is None:
        kwargs = {
            "region_name": DYNAMODB_REGION,
            "config": Config(retries={"max_attempts": 5, "mode": "standard"}),
        }
        if DYNAMODB_ENDPOINT_URL:
            kwargs["endpoint_url"] = DYNAMODB_ENDPOINT_URL
        _ddb = boto3.client("dynamodb", **kwargs)
    return _ddb
