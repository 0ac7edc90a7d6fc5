import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from functools import wraps
from threading import RLock
from typing import Dict, Optional

from tinydb.storages import Storage


def with_lock(lock: RLock):
    """Decorator factory that wraps a function with the given lock."""
    def decorator(fn):
        @wraps(fn)
        def _wrapped(*args, **kwargs):
            with lock:
                return fn(*args, **kwargs)
        return _wrapped
    return decorator


@contextmanager
def file_lock(path: str):
    """Exclusive advisory lock on `path`, held across processes. Not reentrant within a process."""
    with open(path, "a") as lock_file:
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


class AtomicJSONStorage(Storage):
    """
    TinyDB storage that reads the whole file per operation and replaces it atomically on write, so a reader
    sees either the previous or the next complete document.
    """

    def __init__(self, path: str, indent: Optional[int] = 2) -> None:
        super().__init__()
        self.path = path
        self.indent = indent

    def read(self) -> Optional[Dict]:
        try:
            with open(self.path) as f:
                content = f.read()
        except FileNotFoundError:
            return None
        if not content.strip():
            return None
        return json.loads(content)

    def write(self, data: Dict) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=self.indent)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def close(self) -> None:
        pass
