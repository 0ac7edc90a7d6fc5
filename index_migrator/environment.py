import logging
from pathlib import Path
from typing import Dict, Optional, Union

import yaml
from cerberus import Validator

from index_migrator.db.task_db import DEFAULT_TASK_FILE
from index_migrator.models.client_options import ClientOptions
from index_migrator.models.cluster import Cluster
from index_migrator.models.indices import IndexFilter
from index_migrator.models.transfer import validate_transfer_config
import index_migrator.models.reindex as reindex_model

logger = logging.getLogger(__name__)


SCHEMA = {
    "source_cluster": {"type": "dict", "required": False},
    "target_cluster": {"type": "dict", "required": False},
    "index_filter": {"type": "dict", "required": False, "nullable": True},
    "transfer": {"type": "dict", "required": False, "nullable": True},
    "reindex": {"type": "dict", "required": False, "nullable": True},
    "client_options": {"type": "dict", "required": False},
}


class Environment:
    source_cluster: Optional[Cluster] = None
    target_cluster: Optional[Cluster] = None
    index_filter: IndexFilter
    transfer: Dict
    task_file: str = DEFAULT_TASK_FILE
    client_options: Optional[ClientOptions] = None
    config: Dict

    def __init__(self, config: Optional[Dict] = None, config_file: Optional[Union[str, Path]] = None):
        """
        Initialize the environment either from a configuration file or a direct configuration object.

        :param config: Direct configuration object (overrides config_file).
        :param config_file: Path to the YAML config file.
        """
        if isinstance(config, Dict):
            self.config = config
            logger.info("Using provided config")
        elif config_file:
            logger.info(f"Loading config file: {config_file}")
            with open(config_file) as f:
                self.config = yaml.safe_load(f) or {}
        else:
            raise ValueError("Either config or config_file must be provided.")

        v = Validator(SCHEMA)
        if not v.validate(self.config):
            logger.error(f"Config file validation errors: {v.errors}")
            raise ValueError("Invalid config file", v.errors)

        if 'client_options' in self.config:
            self.client_options = ClientOptions(self.config["client_options"])

        if 'source_cluster' in self.config:
            self.source_cluster = Cluster(config=self.config["source_cluster"],
                                          client_options=self.client_options)
            logger.info(f"Source cluster initialized: {self.source_cluster.endpoint}")
        else:
            logger.info("No source cluster provided")

        if 'target_cluster' in self.config:
            self.target_cluster = Cluster(config=self.config["target_cluster"],
                                          client_options=self.client_options)
            logger.info(f"Target cluster initialized: {self.target_cluster.endpoint}")
        else:
            logger.info("No target cluster provided")

        self.index_filter = IndexFilter(self.config.get("index_filter"))

        self.transfer = self.config.get("transfer") or {}
        validate_transfer_config(self.transfer)

        reindex_config = self.config.get("reindex") or {}
        v = Validator(reindex_model.SCHEMA)
        if not v.validate({"reindex": reindex_config}):
            raise ValueError("Invalid config file for reindex", v.errors)
        self.task_file = reindex_config.get("task_file", DEFAULT_TASK_FILE)
