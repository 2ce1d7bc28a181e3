"""Whole-file persistence for the campaign dataset and run reports."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, List

from .errors import DatasetError
from .models import CampaignRecord


def load_dataset(path: Path) -> List[CampaignRecord]:
    path = Path(path)
    if not path.exists():
        raise DatasetError(f"Dataset not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise DatasetError(f"Unreadable dataset {path}: {exc}") from exc
    if not isinstance(payload, list):
        raise DatasetError(f"Dataset {path} is not a JSON array")
    records: List[CampaignRecord] = []
    seen: set[str] = set()
    for idx, item in enumerate(payload):
        if not isinstance(item, dict):
            raise DatasetError(f"Dataset item {idx} is not an object")
        record = CampaignRecord.from_dict(item)
        if not record.id:
            raise DatasetError(f"Dataset item {idx} has no id")
        if record.id in seen:
            raise DatasetError(f"Duplicate record id: {record.id}")
        seen.add(record.id)
        records.append(record)
    return records


def write_json(path: Path, payload: Any) -> None:
    """Rewrite the whole file through a sibling temp file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    os.replace(tmp, path)


def save_dataset(path: Path, records: List[CampaignRecord]) -> None:
    write_json(path, [record.to_dict() for record in records])


def write_report(path: Path, report: Any) -> None:
    write_json(path, report.to_dict() if hasattr(report, "to_dict") else report)
