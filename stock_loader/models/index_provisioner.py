import datetime as dt
import json
import logging
import types
import typing
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel
from requests.exceptions import HTTPError, RequestException

from stock_loader.models.cluster import Cluster, HttpMethod
from stock_loader.models.stock_record import StockRecord

logger = logging.getLogger(__name__)

DEFAULT_INDEX_NAME = "stock-demo-v1"
DEFAULT_ALIAS_NAME = "stock-demo"

DEFAULT_INDEX_SETTINGS = {
    "number_of_shards": 1,
    "number_of_replicas": 0
}

# Fields that must be matched exactly rather than analyzed as full text
KEYWORD_FIELDS = {"symbol"}

TEXT_WITH_KEYWORD = {"type": "text", "fields": {"keyword": {"type": "keyword", "ignore_above": 256}}}
FIELD_TYPE_MAPPINGS = {
    dt.date: {"type": "date"},
    dt.datetime: {"type": "date"},
    float: {"type": "double"},
    int: {"type": "long"},
    bool: {"type": "boolean"},
    str: TEXT_WITH_KEYWORD,
}

JSON_HEADERS = {"Content-Type": "application/json"}


class ProvisionError(Exception):
    def __init__(self, message: str, index_name: Optional[str] = None):
        self.index_name = index_name
        super().__init__(message)


def _unwrap_optional(annotation):
    if typing.get_origin(annotation) in (typing.Union, types.UnionType):
        args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def build_mappings(model: Type[BaseModel] = StockRecord, keyword_fields=KEYWORD_FIELDS) -> Dict[str, Any]:
    """
    Derives index mappings from the field types of a model. Strings become full-text fields with a
    `keyword` sub-field, except for `keyword_fields` which are mapped as plain keywords.
    """
    properties = {}
    for field_name, field_info in model.model_fields.items():
        if field_name in keyword_fields:
            properties[field_name] = {"type": "keyword"}
            continue
        field_type = _unwrap_optional(field_info.annotation)
        if field_type not in FIELD_TYPE_MAPPINGS:
            raise ValueError(f"No mapping known for field '{field_name}' of type {field_type}")
        properties[field_name] = FIELD_TYPE_MAPPINGS[field_type]
    return {"properties": properties}


class IndexProvisioner:
    """
    Creates the versioned stock index and publishes the alias readers query through.

    Every call that is refused, unacknowledged or fails in transit raises ProvisionError; none of
    them are retried since later steps assume the index exists with the right mappings.
    """

    def __init__(self, cluster: Cluster) -> None:
        self.cluster = cluster

    def _call(self, index_name: Optional[str], description: str, path: str, method: HttpMethod, body=None):
        try:
            return self.cluster.call_api(path, method=method,
                                         data=json.dumps(body) if body is not None else None,
                                         headers=JSON_HEADERS if body is not None else None,
                                         raise_error=False)
        except RequestException as e:
            logger.error(f"Failed to {description}: {e}")
            raise ProvisionError(f"Failed to {description}: {type(e).__name__} {e}", index_name) from e

    def exists(self, index_name: str) -> bool:
        r = self._call(index_name, f"check whether index '{index_name}' exists", f"/{index_name}",
                       HttpMethod.HEAD)
        if r.status_code == 200:
            return True
        if r.status_code == 404:
            return False
        raise ProvisionError(f"Unexpected status {r.status_code} checking index '{index_name}'", index_name)

    def create_if_absent(self, index_name: str, mappings: Optional[Dict] = None,
                         settings: Optional[Dict] = None) -> bool:
        """
        Creates `index_name` unless it already exists. Returns True when the index was created by this call.
        """
        if self.exists(index_name):
            logger.info(f"Index '{index_name}' already exists, leaving it untouched")
            return False

        body = {
            "settings": settings if settings is not None else DEFAULT_INDEX_SETTINGS,
            "mappings": mappings if mappings is not None else build_mappings()
        }
        logger.info(f"Creating index '{index_name}' with body: {body}")
        r = self._call(index_name, f"create index '{index_name}'", f"/{index_name}", HttpMethod.PUT, body)
        _raise_unless_acknowledged(r, f"Creation of index '{index_name}'", index_name)
        logger.info(f"Created index '{index_name}'")
        return True

    def publish_alias(self, index_name: str, alias_name: str) -> None:
        """Points `alias_name` at `index_name`. Adding an alias that already exists is a no-op on the cluster."""
        body = {"actions": [{"add": {"index": index_name, "alias": alias_name}}]}
        r = self._call(index_name, f"publish alias '{alias_name}'", "/_aliases", HttpMethod.POST, body)
        _raise_unless_acknowledged(r, f"Alias '{alias_name}' for index '{index_name}'", index_name)
        logger.info(f"Alias '{alias_name}' now points to '{index_name}'")

    def refresh(self, index_name: str) -> None:
        """Makes every document written so far visible to searches and counts."""
        r = self._call(index_name, f"refresh index '{index_name}'", f"/{index_name}/_refresh", HttpMethod.POST)
        if not 200 <= r.status_code < 300:
            raise ProvisionError(f"Refresh of index '{index_name}' failed with status {r.status_code}", index_name)

    def alias_targets(self, alias_name: str) -> List[str]:
        r = self._call(None, f"look up alias '{alias_name}'", f"/_alias/{alias_name}", HttpMethod.GET)
        if r.status_code == 404:
            return []
        try:
            r.raise_for_status()
        except HTTPError as e:
            raise ProvisionError(f"Alias lookup for '{alias_name}' failed with status {r.status_code}") from e
        return sorted(r.json().keys())

    def delete(self, index_name: str) -> bool:
        """Deletes the index. Returns False if it did not exist."""
        r = self._call(index_name, f"delete index '{index_name}'", f"/{index_name}", HttpMethod.DELETE)
        if r.status_code == 404:
            logger.info(f"Index '{index_name}' does not exist, nothing to delete")
            return False
        _raise_unless_acknowledged(r, f"Deletion of index '{index_name}'", index_name)
        logger.info(f"Deleted index '{index_name}'")
        return True


def _raise_unless_acknowledged(response, action: str, index_name: Optional[str]) -> None:
    if not 200 <= response.status_code < 300:
        raise ProvisionError(f"{action} failed with status {response.status_code}: {response.text[:500]}",
                             index_name)
    try:
        acknowledged = response.json().get("acknowledged", False)
    except ValueError:
        acknowledged = False
    if acknowledged is not True:
        raise ProvisionError(f"{action} was not acknowledged by the cluster", index_name)
