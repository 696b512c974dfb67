"""
Export of result rows to CSV or JSON, chosen by file suffix.
"""

import csv
import json
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any

SUPPORTED_SUFFIXES = (".csv", ".json")


def to_rows(items: list[Any]) -> list[dict[str, Any]]:
    """Convert dataclasses (or objects with ``to_dict``) to plain dict rows."""
    rows = []
    for item in items:
        if hasattr(item, "to_dict"):
            rows.append(item.to_dict())
        elif is_dataclass(item):
            rows.append(asdict(item))
        else:
            rows.append(dict(item))
    return rows


def export_rows(path: str | Path, items: list[Any]) -> Path:
    """
    Write result rows to ``path``.

    Lists inside rows are joined with ``;`` for CSV output and kept as
    arrays for JSON output.

    Raises:
        ValueError: If the suffix is not .csv or .json
    """
    p = Path(path)
    suffix = p.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError(f"Unsupported export format '{p.suffix}'. Use one of: .csv, .json")

    rows = to_rows(items)
    p.parent.mkdir(parents=True, exist_ok=True)

    if suffix == ".json":
        p.write_text(json.dumps(rows, indent=2, default=str))
        return p

    fieldnames: list[str] = []
    for row in rows:
        for key in row:
            if key not in fieldnames:
                fieldnames.append(key)

    with open(p, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in rows:
            writer.writerow(
                {
                    k: ";".join(str(x) for x in v) if isinstance(v, (list, tuple)) else v
                    for k, v in row.items()
                }
            )
    return p
