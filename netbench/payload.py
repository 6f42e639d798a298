"""Random upload payload files, generated on demand and removed at exit."""

from __future__ import annotations

import atexit
import logging
import os
import tempfile
from typing import Optional

logger = logging.getLogger(__name__)

_CHUNK = 1024

# path -> size of every payload generated by this process
_generated: dict[str, int] = {}


def expected_size(size: int) -> int:
    """Payloads above 1 KiB are written in whole KiB blocks."""
    if size > _CHUNK:
        return _CHUNK * round(size / _CHUNK)
    return size


def payload_file(size: int, directory: Optional[str] = None) -> str:
    """Return the path of a random file of (about) *size* bytes, creating it once."""
    directory = directory or tempfile.gettempdir()
    path = os.path.join(directory, f"uplink_input_{int(size)}")
    if path in _generated and os.path.exists(path):
        return path

    target = expected_size(int(size))
    with open(path, "wb") as fh:
        remaining = target
        while remaining > 0:
            block = min(_CHUNK * 64, remaining)
            fh.write(os.urandom(block))
            remaining -= block

    if os.path.getsize(path) != target:
        os.unlink(path)
        raise OSError(f"unable to generate {target} byte payload in {directory}")

    _generated[path] = target
    logger.debug("Generated %d byte upload payload %s", target, path)
    return path


def resolve_source(body: str | int, directory: Optional[str] = None) -> Optional[str]:
    """Map an upload body (existing file, byte count or literal) to a file path.

    Returns None when the file's directory exists but is not readable.
    """
    if isinstance(body, str):
        parent = os.path.dirname(body)
        if body.startswith("/") and os.path.isdir(parent) and not os.access(parent, os.R_OK):
            logger.warning("Directory %s for upload file %s is not readable", parent, os.path.basename(body))
            return None
        if os.path.isfile(body):
            return body
        size = int(body) if body.isdigit() and int(body) > 0 else len(body)
    else:
        size = int(body)
    return payload_file(size, directory)


def cleanup() -> None:
    for path in list(_generated):
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        _generated.pop(path, None)


atexit.register(cleanup)
