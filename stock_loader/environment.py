import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Union

import yaml
from cerberus import Validator

from stock_loader.models.cluster import Cluster
from stock_loader.models.ingest_config import IngestConfig
from stock_loader.models.stock_record import DEFAULT_COMPANY_NAMES

logger = logging.getLogger(__name__)


SCHEMA = {
    "target_cluster": {"type": "dict", "required": False},
    "ingest": {"type": "dict", "required": False},
    "company_names": {
        "type": "dict",
        "required": False,
        "keysrules": {"type": "string", "empty": False},
        "valuesrules": {"type": "string"},
    },
}


class Environment:
    target_cluster: Optional[Cluster] = None
    ingest: Optional[IngestConfig] = None
    company_names: Mapping[str, str] = DEFAULT_COMPANY_NAMES
    config: Dict

    def __init__(self, config_file: Optional[Union[str, Path]] = None, config: Optional[Dict] = None):
        """
        Initialize the environment either from a YAML configuration file or a direct configuration object.

        :param config_file: Path to the YAML config file.
        :param config: Direct configuration object, used when no config_file is given.
        """
        if config_file:
            logger.info(f"Loading config file: {config_file}")
            with open(config_file) as f:
                self.config = yaml.safe_load(f) or {}
        elif isinstance(config, Dict):
            self.config = config
        else:
            raise ValueError("Either config or config_file must be provided.")

        v = Validator(SCHEMA)
        if not v.validate(self.config):
            logger.error(f"Config file validation errors: {v.errors}")
            raise ValueError("Invalid config file", v.errors)

        if 'target_cluster' in self.config:
            self.target_cluster = Cluster(config=self.config["target_cluster"])
            logger.info(f"Target cluster initialized: {self.target_cluster.endpoint}")
        else:
            logger.warning("No target cluster provided. This may prevent other actions from proceeding.")

        if 'ingest' in self.config:
            self.ingest = IngestConfig(self.config["ingest"])
            logger.info(f"Ingest initialized: {self.ingest.source_file} -> {self.ingest.index_name}")
        else:
            logger.info("No ingest provided")

        if 'company_names' in self.config:
            self.company_names = MappingProxyType(dict(self.config["company_names"]))
            logger.info(f"Using {len(self.company_names)} company names from config")
