"""Catalog of downlink test files served by throughput endpoints."""

from __future__ import annotations

import functools
import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from typing import Mapping, Optional

from netbench.config import BYTES_PER_MB, CDN_FILE_EXTENSIONS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownlinkFile:
    name: str
    size: int  # bytes


@functools.lru_cache(maxsize=1)
def load_downlink_files() -> Mapping[str, int]:
    """File name -> nominal size in bytes, smallest first."""
    text = resources.files("netbench.data").joinpath("downlink_files.json").read_text(encoding="utf-8")
    files = json.loads(text)
    return dict(sorted(((name, int(size)) for name, size in files.items()), key=lambda item: item[1]))


def select_downlink_file(
    size: float,
    service_type: Optional[str] = None,
    files_dir: Optional[str] = None,
    files: Optional[Mapping[str, int]] = None,
) -> Optional[DownlinkFile]:
    """Pick the catalog file closest to *size* bytes.

    CDN endpoints only serve image and script files. When *files_dir* is set
    the on-disk size of the chosen file replaces the nominal size.
    """
    catalog = files if files is not None else load_downlink_files()
    best: Optional[DownlinkFile] = None
    best_diff: Optional[float] = None
    for name, nominal in catalog.items():
        diff = abs(size - nominal)
        if best_diff is not None and diff >= best_diff:
            continue
        if service_type == "cdn" and name.rsplit(".", 1)[-1] not in CDN_FILE_EXTENSIONS:
            continue
        best, best_diff = DownlinkFile(name, nominal), diff

    if best is None:
        return None
    if files_dir:
        best = DownlinkFile(best.name, os.path.getsize(os.path.join(files_dir, best.name)))
    logger.debug(
        "Selected downlink file %s [%.2f MB] for size %.2f MB",
        best.name, best.size / BYTES_PER_MB, size / BYTES_PER_MB,
    )
    return best


def check_files_dir(files_dir: str, files: Optional[Mapping[str, int]] = None) -> Optional[str]:
    """Return an error message when *files_dir* cannot back the catalog."""
    if not os.path.isdir(files_dir):
        return f"--test_files_dir {files_dir} is not a directory"
    if not os.access(files_dir, os.R_OK):
        return f"--test_files_dir {files_dir} is not readable"
    catalog = files if files is not None else load_downlink_files()
    for name, nominal in catalog.items():
        path = os.path.join(files_dir, name)
        if not os.path.isfile(path):
            return f"--test_files_dir {files_dir} does not contain the file {name}"
        actual = os.path.getsize(path)
        if abs(nominal - actual) / nominal > 0.1:
            return (
                f"The test file {name} in --test_files_dir {files_dir} is more than 10% "
                f"different in size from expected ({actual} vs {nominal})"
            )
    return None
