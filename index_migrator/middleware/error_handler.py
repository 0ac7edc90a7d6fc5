import logging
from typing import Any, Callable, Tuple

from index_migrator.models.command_result import CommandResult
from index_migrator.models.utils import ExitCode

logger = logging.getLogger(__name__)


def handle_errors(operation: str,
                  on_success: Callable[[Any], Tuple[ExitCode, str]] = lambda value: (ExitCode.SUCCESS, value),
                  on_failure: Callable[[Any], Tuple[ExitCode, str]] = lambda value: (ExitCode.FAILURE, value)
                  ) -> Callable[..., Tuple[ExitCode, str]]:
    def decorator(func: Callable[..., CommandResult]) -> Callable[..., Tuple[ExitCode, str]]:
        def wrapper(*args, **kwargs) -> Tuple[ExitCode, str]:
            try:
                result = func(*args, **kwargs)
            except NotImplementedError as e:
                logger.error(f"{func.__name__} is not implemented for {operation}: {e}")
                return ExitCode.FAILURE, f"{func.__name__} is not implemented for {operation}: {e}"
            except Exception as e:
                logger.error(f"Failed to {func.__name__} {operation}: {e}")
                return ExitCode.FAILURE, f"Failure on {func.__name__} for {operation}: {type(e).__name__} {e}"
            if result.success:
                return on_success(result.value)
            return on_failure(result.value)
        return wrapper
    return decorator
