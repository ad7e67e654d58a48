import uuid
from pathlib import Path
from typing import Optional
from .logger import logger


def unique_path(directory: Path, prefix: str, suffix: str = ".pdf") -> Path:
    """Return a fresh, collision-free path `<directory>/<prefix>_<uuid4><suffix>`."""
    return Path(directory) / f"{prefix}_{uuid.uuid4().hex}{suffix}"


def safe_unlink(path: Optional[Path]) -> bool:
    """Delete an intermediate artifact; a missing or locked file is logged, not raised."""
    if path is None:
        return False
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Could not delete {path}: {e}")
        return False
