import logging
from typing import Any, Callable, Tuple

from stock_loader.models.utils import ExitCode

logger = logging.getLogger(__name__)


def handle_errors(service_type: str,
                  on_success: Callable[[Any], Tuple[ExitCode, str]] = lambda value: (ExitCode.SUCCESS, str(value)),
                  on_failure: Callable[[Any], Tuple[ExitCode, str]] = lambda value: (ExitCode.FAILURE, str(value))
                  ) -> Callable[[Any], Tuple[ExitCode, str]]:
    """
    Wraps a middleware call that returns a CommandResult so it always yields an (ExitCode, message)
    pair. Any exception is logged and reported as a failure naming the stage that raised it.
    """
    def decorator(func: Callable[..., Any]) -> Callable[..., Tuple[ExitCode, str]]:
        def wrapper(*args, **kwargs) -> Tuple[ExitCode, str]:
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(f"Failed to {func.__name__} {service_type}: {e}")
                return ExitCode.FAILURE, f"Failure on {func.__name__} for {service_type}: {type(e).__name__} {e}"
            if result.success:
                return on_success(result.value)
            return on_failure(result.value)
        return wrapper
    return decorator
