import json
import os
from typing import Any

from smartrouter.errors import StoreIOError


def read_json(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise StoreIOError(f"failed to read {path}: {e}") from e


def write_json_atomic(path: str, data: Any):
    """Write to a sibling temp file, then rename over the target."""
    temp_path = f"{path}.tmp"
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(temp_path, path)
    except (OSError, TypeError) as e:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise StoreIOError(f"failed to write {path}: {e}") from e
