"""
File persistence helpers shared by the config, alias and ruleset writers.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from ..errors import ConfigIOError

logger = logging.getLogger(__name__)


def atomic_write_text(path: Union[str, Path], content: str, mode: int = 0o644) -> None:
    """Write ``content`` to ``path`` via a temp file and rename.

    Readers never observe a half-written file. Failures raise ConfigIOError.
    """
    path = Path(path)
    tmp_name: Optional[str] = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        logger.error(f"Failed to write {path}: {e}")
        raise ConfigIOError(f"Failed to write {path}: {e}") from e
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)


def read_text(path: Union[str, Path], missing_ok: bool = False) -> Optional[str]:
    """Read a text file, raising ConfigIOError on failure.

    With ``missing_ok`` a nonexistent file returns None instead.
    """
    path = Path(path)
    try:
        return path.read_text()
    except FileNotFoundError as e:
        if missing_ok:
            return None
        raise ConfigIOError(f"{path} does not exist") from e
    except OSError as e:
        raise ConfigIOError(f"Failed to read {path}: {e}") from e
