import logging
from typing import Dict, Mapping

from cerberus import Validator

from stock_loader.models.bulk_loader import BulkLoadSettings
from stock_loader.models.cluster import Cluster
from stock_loader.models.index_provisioner import DEFAULT_ALIAS_NAME, DEFAULT_INDEX_NAME
from stock_loader.models.ingestion import IngestionPipeline
from stock_loader.models.stock_record import DEFAULT_COMPANY_NAMES

logger = logging.getLogger(__name__)

BULK_SCHEMA = {
    "type": "dict",
    "schema": {
        "batch_size": {"type": "integer", "required": False, "min": 1},
        "max_concurrent_batches": {"type": "integer", "required": False, "min": 1},
        "max_retries_per_batch": {"type": "integer", "required": False, "min": 0},
        "retry_backoff_seconds": {"type": "number", "required": False, "min": 0},
        "overall_timeout_seconds": {"type": "number", "required": False, "min": 1},
    }
}

INGEST_SCHEMA = {
    "ingest": {
        "type": "dict",
        "schema": {
            "source_file": {"type": "string", "required": True, "empty": False},
            "index_name": {"type": "string", "required": False, "empty": False},
            "alias_name": {"type": "string", "required": False, "empty": False},
            "skip_header": {"type": "boolean", "required": False},
            "bulk": BULK_SCHEMA,
        }
    }
}


class IngestConfig:
    """Where the stock CSV file is read from, which index and alias it is loaded into, and how."""

    def __init__(self, config: Dict) -> None:
        v = Validator(INGEST_SCHEMA)
        if not v.validate({'ingest': config}):
            raise ValueError("Invalid config file for ingest", v.errors)
        self.config = config
        self.source_file = config["source_file"]
        self.index_name = config.get("index_name", DEFAULT_INDEX_NAME)
        self.alias_name = config.get("alias_name", DEFAULT_ALIAS_NAME)
        self.skip_header = config.get("skip_header", False)
        self.bulk_settings = BulkLoadSettings(**config.get("bulk", {}))

    def with_overrides(self, **overrides) -> "IngestConfig":
        """Returns a copy with top-level or bulk options replaced; None values are ignored."""
        config = dict(self.config)
        bulk = dict(config.get("bulk", {}))
        for key, value in overrides.items():
            if value is None:
                continue
            if key in BULK_SCHEMA["schema"]:
                bulk[key] = value
            else:
                config[key] = value
        if bulk:
            config["bulk"] = bulk
        return IngestConfig(config)

    def build_pipeline(self, cluster: Cluster,
                       company_names: Mapping[str, str] = DEFAULT_COMPANY_NAMES) -> IngestionPipeline:
        return IngestionPipeline(cluster, self.source_file,
                                 index_name=self.index_name,
                                 alias_name=self.alias_name,
                                 bulk_settings=self.bulk_settings,
                                 company_names=company_names,
                                 skip_header=self.skip_header)

    def __str__(self):
        return (f"Source file: {self.source_file}\nIndex: {self.index_name}\nAlias: {self.alias_name}\n"
                f"Bulk settings: {self.bulk_settings}")
