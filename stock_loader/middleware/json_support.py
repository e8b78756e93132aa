import json
from typing import Any, Callable, Dict, List, Tuple

import yaml

from stock_loader.models.utils import ExitCode


def support_json_return() -> Callable[..., Callable[..., Tuple[ExitCode, str]]]:
    """Renders the payload of an (ExitCode, payload) result as JSON when as_json is set, YAML otherwise."""
    def decorator(func: Callable[..., Tuple[ExitCode, Dict | List | str]]) -> Callable[..., Tuple[ExitCode, str]]:
        def wrapper(*args, as_json=False, **kwargs) -> Tuple[ExitCode, str]:
            exit_code, payload = func(*args, **kwargs)
            if exit_code != ExitCode.SUCCESS:
                return exit_code, str(payload)
            if as_json:
                return exit_code, json.dumps(payload)
            return exit_code, yaml.safe_dump(payload, sort_keys=False)
        return wrapper
    return decorator
