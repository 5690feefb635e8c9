"""
File Utilities
==============
Write-new-then-replace helpers so a failed run never leaves a half-written file.
"""

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Union


def write_atomic(path: Union[str, Path], text: str) -> Path:
    """
    Write text to a temp file next to path, then rename it over path.

    Readers see either the old file or the complete new one.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8', newline='') as f:
            f.write(text)
        if path.exists():
            shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return path


def read_json(path: Union[str, Path]) -> Any:
    with open(path, encoding='utf-8') as f:
        return json.load(f)


def write_json(path: Union[str, Path], data: Any) -> Path:
    """Compact JSON, the format the web app loads as static fallback data."""
    return write_atomic(path, json.dumps(data, ensure_ascii=False, separators=(',', ':')))
