import base64
import json
import logging
import shutil
from typing import Dict, Optional

from cerberus import Validator

from index_migrator.exceptions import TransferFailure
from index_migrator.models.cluster import AuthMethod, Cluster
from index_migrator.models.command_result import CommandResult
from index_migrator.models.command_runner import CommandRunner, CommandRunnerError, FlagOnlyArgument

logger = logging.getLogger(__name__)

INPUT_HEADERS_ARG = "--input-headers"
OUTPUT_HEADERS_ARG = "--output-headers"

ELASTICDUMP_SCHEMA = {
    "elasticdump": {
        "type": "dict",
        "nullable": True,
        "schema": {
            "command": {"type": "string", "required": False},
            "limit": {"type": "integer", "min": 1, "required": False},
            "scroll_time": {"type": "string", "required": False},
            "retry_attempts": {"type": "integer", "min": 0, "required": False},
            "retry_delay_ms": {"type": "integer", "min": 0, "required": False},
            "max_sockets": {"type": "integer", "min": 1, "required": False},
            "timeout_seconds": {"type": "number", "min": 0, "required": False, "nullable": True}
        }
    }
}


class BulkCopier:
    """
    Copies the documents of one index from the source to the target cluster, preserving document ids.
    Implementations own their retry policy and raise TransferFailure once it is exhausted.
    """

    def copy(self, index: str, search_body: Optional[Dict] = None, log_file: Optional[str] = None) -> CommandResult:
        raise NotImplementedError

    def is_available(self) -> bool:
        raise NotImplementedError


def _auth_headers(cluster: Cluster) -> Optional[Dict[str, str]]:
    if cluster.auth_type == AuthMethod.BASIC_AUTH:
        details = cluster.get_basic_auth_details()
        token = base64.b64encode(f"{details.username}:{details.password}".encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {token}"}
    elif cluster.auth_type == AuthMethod.SIGV4:
        raise NotImplementedError(f"Auth type {cluster.auth_type} is not currently supported for elasticdump copies")
    return None


class ElasticdumpCopier(BulkCopier):
    def __init__(self, source: Cluster, target: Cluster, config: Optional[Dict] = None) -> None:
        config = config or {}
        v = Validator(ELASTICDUMP_SCHEMA)
        if not v.validate({"elasticdump": config}):
            raise ValueError("Invalid config file for elasticdump", v.errors)
        self.source = source
        self.target = target
        self.command = config.get("command", "elasticdump")
        self.limit = config.get("limit", 10000)
        self.scroll_time = config.get("scroll_time", "10m")
        self.retry_attempts = config.get("retry_attempts", 5)
        self.retry_delay_ms = config.get("retry_delay_ms", 5000)
        self.max_sockets = config.get("max_sockets", 10)
        self.timeout_seconds = config.get("timeout_seconds")
        # Credentials are looked up once, before any copy starts
        self._auth_headers = {INPUT_HEADERS_ARG: _auth_headers(source), OUTPUT_HEADERS_ARG: _auth_headers(target)}

    def is_available(self) -> bool:
        return shutil.which(self.command) is not None

    def build_runner(self, index: str, search_body: Optional[Dict] = None,
                     log_file: Optional[str] = None) -> CommandRunner:
        command_args = {
            "--input": f"{self.source.endpoint}/{index}",
            "--output": f"{self.target.endpoint}/{index}",
            "--type": "data",
            "--limit": self.limit,
            "--scrollTime": self.scroll_time,
            "--noRefresh": FlagOnlyArgument,
            "--retryAttempts": self.retry_attempts,
            "--retryDelay": self.retry_delay_ms,
            "--maxSockets": self.max_sockets,
        }
        sensitive_fields = []
        for arg, headers in self._auth_headers.items():
            if headers:
                command_args[arg] = json.dumps(headers)
                sensitive_fields.append(arg)
        if search_body:
            command_args["--searchBody"] = json.dumps(search_body)
        env = None
        if any(c.endpoint.startswith("https") and c.allow_insecure for c in (self.source, self.target)):
            # elasticdump runs on node, which skips certificate verification only through this variable
            env = {"NODE_TLS_REJECT_UNAUTHORIZED": "0"}
        return CommandRunner(self.command, command_args, sensitive_fields=sensitive_fields,
                             log_file=log_file, timeout=self.timeout_seconds, env=env)

    def copy(self, index: str, search_body: Optional[Dict] = None, log_file: Optional[str] = None) -> CommandResult:
        runner = self.build_runner(index, search_body=search_body, log_file=log_file)
        logger.debug(f"Copying {index} with command: {' '.join(runner.sanitized_command())}")
        try:
            return runner.run(print_to_console=False)
        except CommandRunnerError as e:
            raise TransferFailure(index, str(e)) from e
