"""
State file persistence: atomic read/write for StoreState.

The deployment baseline lives in ``<store>/.dotcluster/state.json``.
Writes are atomic (write to temp file, then rename) so a crash
mid-write never leaves a half-written baseline behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from dotcluster.core.config.loader import state_dir
from dotcluster.core.models.state import StoreState

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "state.json"


def default_state_path(store_root: Path) -> Path:
    """Get the default state file path for a store."""
    return state_dir(store_root) / DEFAULT_STATE_FILE


def load_state(path: Path) -> StoreState:
    """Load the deployment baseline from a JSON file.

    Args:
        path: Path to the state JSON file.

    Returns:
        StoreState. A missing or unreadable file yields a fresh state,
        which means every cluster is treated as undeployed.
    """
    if not path.is_file():
        logger.info("No state file at %s; starting fresh", path)
        return StoreState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = StoreState.model_validate(data)
        logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
        return state
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s; starting fresh", path, e)
        return StoreState()
    except (OSError, ValidationError) as e:
        logger.warning("Cannot load state from %s: %s; starting fresh", path, e)
        return StoreState()


def save_state(state: StoreState, path: Path) -> None:
    """Save the deployment baseline (atomic write).

    Args:
        state: The state to save.
        path: Target path for the state file.

    Raises:
        OSError: If the file cannot be written.
    """
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    os.close(fd)
    tmp = Path(tmp_path)
    try:
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(path)
        logger.debug("State saved to %s", path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s: %s", path, e)
        raise
