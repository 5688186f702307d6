from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def read_file(path: str | Path) -> bytes:
    """Read a local file, expanding ``~``. Raises FileNotFoundError / OSError."""
    file_path = Path(path).expanduser()
    if not file_path.is_file():
        logger.error("File %s not found", file_path)
        raise FileNotFoundError(f"File not found: {file_path}")
    return file_path.read_bytes()
