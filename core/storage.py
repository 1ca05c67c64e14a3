"""JSON file helpers shared by the catalog, schedule and feedback stores."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def load_json(path: Path, default: Any) -> Any:
    """
    Load JSON data from a file.

    Args:
        path: File to read.
        default: Returned when the file is missing or unreadable.

    Returns:
        Parsed JSON data, or default.
    """
    if not path.exists():
        return default
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, IOError, OSError) as e:
        logger.warning(f"Invalid data file {path}, using defaults: {e}")
        return default


def atomic_write_json(path: Path, data: Any, prefix: str = "data_") -> bool:
    """
    Save JSON data atomically.

    Writes to a temp file in the same directory, then renames it over the
    target so a crash mid-write never leaves a truncated file.

    Args:
        path: Destination file.
        data: JSON-serializable data.
        prefix: Temp file prefix (helps identify leftovers).

    Returns:
        True if saved successfully, False otherwise.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(suffix='.tmp', prefix=prefix, dir=path.parent)

        try:
            with os.fdopen(temp_fd, 'w', encoding="utf-8") as f:
                json.dump(data, f, indent=2)

            try:
                os.replace(temp_path, path)
            except OSError:
                # Fallback for systems where replace doesn't work
                if path.exists():
                    path.unlink()
                os.rename(temp_path, path)
            return True

        except Exception:
            # Clean up temp file on error
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    except (IOError, OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to save {path}: {e}")
        return False
