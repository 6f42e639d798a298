"""JSON, CSV and key=value export for result rows."""

from __future__ import annotations

import csv
import io
import json
from typing import Any, Iterable

from netbench.models import ResultRow


def rows_to_dicts(rows: Iterable[ResultRow]) -> list[dict[str, Any]]:
    return [row.as_dict() for row in rows]


def export_json(rows: Iterable[ResultRow], indent: int = 2) -> str:
    """Rows as a JSON array."""
    return json.dumps(rows_to_dicts(rows), indent=indent, default=str)


def export_csv(rows: Iterable[ResultRow]) -> str:
    """Rows as CSV; the header is the union of all row keys in first-seen order."""
    records = rows_to_dicts(rows)
    columns: list[str] = []
    for record in records:
        for key in record:
            if key not in columns:
                columns.append(key)

    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=columns, restval="", lineterminator="\n")
    writer.writeheader()
    for record in records:
        writer.writerow({k: _csv_value(v) for k, v in record.items()})
    return output.getvalue()


def _csv_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    return "" if value is None else value


def export_kv(rows: Iterable[ResultRow]) -> str:
    """Rows as ``key=value`` lines.

    With more than one row every key is suffixed with the 1-based row
    number (``metric1=...``, ``metric2=...``). Unset values are skipped.
    """
    records = rows_to_dicts(rows)
    lines = []
    for i, record in enumerate(records, start=1):
        suffix = str(i) if len(records) > 1 else ""
        for key, value in record.items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = int(value)
            lines.append(f"{key}{suffix}={value}")
    return "\n".join(lines) + ("\n" if lines else "")


EXPORTERS = {
    "json": export_json,
    "csv": export_csv,
    "kv": export_kv,
}


def write_to_file(content: str, filepath: str) -> None:
    """Write export content to a file."""
    with open(filepath, "w", encoding="utf-8") as f:
        f.write(content)
