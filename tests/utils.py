import json
from typing import Dict, List, Optional
from unittest.mock import MagicMock

from stock_loader.models.cluster import AuthMethod, Cluster
from stock_loader.models.stock_record import StockRecord


def create_valid_cluster(endpoint: str = "http://opensearchtarget:9200",
                         allow_insecure: bool = True,
                         auth_type: AuthMethod = AuthMethod.NO_AUTH,
                         details: Optional[Dict] = None):

    if details is None and auth_type == AuthMethod.BASIC_AUTH:
        details = {"username": "admin", "password": "myStrongPassword123!"}

    custom_cluster_config = {
        "endpoint": endpoint,
        "allow_insecure": allow_insecure,
        auth_type.name.lower(): details if details else {}
    }
    return Cluster(custom_cluster_config)


def make_records(count: int, symbol: str = "AAL") -> List[StockRecord]:
    return [StockRecord(symbol=symbol, volume=i, close=float(i)) for i in range(count)]


def parse_bulk_payload(payload: str) -> List[tuple[Dict, Dict]]:
    """Splits an NDJSON _bulk body into (action, document) pairs."""
    lines = [json.loads(line) for line in payload.splitlines() if line]
    return list(zip(lines[0::2], lines[1::2]))


def bulk_response(ids: List[str], failed_ids: Optional[List[str]] = None) -> MagicMock:
    failed_ids = failed_ids or []
    response = MagicMock()
    response.status_code = 200
    response.json.return_value = {
        "took": 3,
        "errors": bool(failed_ids),
        "items": [
            {"index": {"_id": doc_id, "status": 429,
                       "error": {"type": "es_rejected_execution_exception"}}}
            if doc_id in failed_ids else {"index": {"_id": doc_id, "status": 201}}
            for doc_id in ids
        ]
    }
    return response
