from typing import Generic, Optional, TypeVar
from dataclasses import dataclass
import subprocess

T = TypeVar('T')


@dataclass
class CommandResult(Generic[T]):
    success: bool
    value: T | Exception | None
    output: Optional[subprocess.CompletedProcess] = None
