from typing import Any, Optional


class MigrationError(Exception):
    pass


class ConnectivityError(MigrationError):
    """The cluster could not be reached, or answered with an unexpected server-side error."""
    def __init__(self, endpoint: str, details: Any = None):
        super().__init__(f"Unable to reach cluster at {endpoint}", details)
        self.endpoint = endpoint


class AuthError(MigrationError):
    """Credentials were rejected. Never retried."""
    def __init__(self, endpoint: str, status_code: int):
        super().__init__(f"Credentials rejected by cluster at {endpoint}", status_code)
        self.endpoint = endpoint
        self.status_code = status_code


class FetchError(MigrationError):
    def __init__(self, index: str, what: str, details: Any = None):
        super().__init__(f"Failed to fetch {what} for index '{index}'", details)
        self.index = index


class SchemaRejected(MigrationError):
    def __init__(self, index: str, status_code: int, error: Any):
        super().__init__(f"Target rejected index '{index}' with HTTP {status_code}", error)
        self.index = index
        self.status_code = status_code
        self.error = error


class IndexCreationError(MigrationError):
    def __init__(self, index: str, details: Any = None):
        super().__init__(f"Failed to create index '{index}' on target", details)
        self.index = index


class TransferFailure(MigrationError):
    def __init__(self, index: str, details: Any = None, duration: Optional[float] = None):
        super().__init__(f"Document transfer failed for index '{index}'", details)
        self.index = index
        self.duration = duration


class CountFetchError(MigrationError):
    def __init__(self, index: str, endpoint: str, details: Any = None):
        super().__init__(f"Failed to fetch document count for index '{index}' from {endpoint}", details)
        self.index = index


class ReindexStartError(MigrationError):
    def __init__(self, index: str, details: Any = None):
        super().__init__(f"Failed to start remote reindex for index '{index}'", details)
        self.index = index


class TaskUnknown(MigrationError):
    def __init__(self, index: str, task_id: str):
        super().__init__(f"Task '{task_id}' for index '{index}' is unknown to the target cluster")
        self.index = index
        self.task_id = task_id


class TaskRecordNotFound(MigrationError):
    def __init__(self, index: str):
        super().__init__(f"No reindex task has been recorded for index '{index}'")
        self.index = index
