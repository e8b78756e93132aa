from typing import Generic, TypeVar
from dataclasses import dataclass

T = TypeVar('T')


@dataclass
class CommandResult(Generic[T]):
    """Outcome of a middleware operation: a value to display on success, or the error message on failure."""
    success: bool
    value: T
