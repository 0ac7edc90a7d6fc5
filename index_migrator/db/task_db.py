import logging
import os
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from threading import RLock
from typing import Iterator, List, Optional

from pydantic import BaseModel, field_serializer, field_validator
from tinydb import Query, TinyDB
from tinydb.table import Table

from index_migrator.db.utils import AtomicJSONStorage, file_lock, with_lock

logger = logging.getLogger(__name__)

DEFAULT_TASK_FILE = "./reindex_tasks.json"
_TABLE_NAME = "reindex_tasks"
_LOCK = RLock()
_QUERY = Query()


class TaskState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    UNKNOWN = "unknown"


class TaskRecord(BaseModel):
    """Database storage model for a remote reindex task started on the target cluster."""
    index: str
    task_id: str
    state: TaskState = TaskState.RUNNING
    success_count: Optional[int] = None
    failure_count: Optional[int] = None
    recorded_at: datetime
    updated_at: datetime

    @field_serializer('recorded_at', 'updated_at')
    def serialize_datetime(self, dt: datetime) -> str:
        return dt.isoformat()

    @field_serializer('state')
    def serialize_state(self, state: TaskState) -> str:
        return state.value

    @field_validator('recorded_at', 'updated_at', mode='before')
    @classmethod
    def parse_datetime(cls, v):
        if isinstance(v, str):
            return datetime.fromisoformat(v)
        return v


class TaskStore:
    """
    Task records kept in a JSON file. Every operation holds a process-wide lock and an exclusive lock on
    `<path>.lock`, and reopens the table under that lock, so concurrent read-modify-write cycles from threads or
    processes never interleave and document ids are always allocated from what is on disk.
    """

    def __init__(self, path: str = DEFAULT_TASK_FILE) -> None:
        self.path = path
        self.lock_path = f"{path}.lock"
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def exists(self) -> bool:
        return os.path.exists(self.path)

    @contextmanager
    def _locked_table(self) -> Iterator[Table]:
        with file_lock(self.lock_path):
            db = TinyDB(self.path, storage=AtomicJSONStorage)
            try:
                yield db.table(_TABLE_NAME, cache_size=0)
            finally:
                db.close()

    @with_lock(_LOCK)
    def upsert(self, record: TaskRecord):
        with self._locked_table() as table:
            table.upsert(record.model_dump(), _QUERY.index == record.index)

    @with_lock(_LOCK)
    def get(self, index: str) -> Optional[TaskRecord]:
        with self._locked_table() as table:
            doc = table.get(_QUERY.index == index)
        return TaskRecord.model_validate(doc) if doc else None

    @with_lock(_LOCK)
    def all(self) -> List[TaskRecord]:
        with self._locked_table() as table:
            docs = table.all()
        return sorted((TaskRecord.model_validate(doc) for doc in docs), key=lambda r: r.index)

    @with_lock(_LOCK)
    def remove(self, index: str) -> bool:
        with self._locked_table() as table:
            removed = table.remove(_QUERY.index == index)
        return bool(removed)
