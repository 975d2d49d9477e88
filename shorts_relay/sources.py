"""JSON items file: the file-backed stand-in for the work item listener."""

import contextlib
import json
import os
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .models import (
    PENDING_STATUSES,
    STATUS_FAILED,
    STATUS_SUCCEEDED,
    ProcessingOutcome,
    WorkItem,
)


def _read_records(path: str) -> Tuple[Any, List[Any]]:
    """Return the parsed document and its list of item records."""
    with open(path, "r", encoding="utf-8") as handle:
        try:
            document = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{path} is not valid JSON: {exc}") from exc

    if isinstance(document, list):
        return document, document
    if isinstance(document, dict) and isinstance(document.get("items"), list):
        return document, document["items"]
    raise ValueError(f"{path} must contain a list of items or an object with an 'items' list")


def parse_work_item(record: Any, index: int, default_owner: Optional[str] = None) -> Optional[WorkItem]:
    """Turn one record into a WorkItem, or None when it is not pending."""
    if not isinstance(record, dict):
        raise ValueError(f"Item #{index} must be an object, got {type(record).__name__}")

    status = str(record.get("status") or "pending").strip().lower()
    if status not in PENDING_STATUSES:
        return None

    item_id = str(record.get("item_id") or "").strip()
    source_url = str(record.get("source_url") or "").strip()
    owner_id = str(record.get("owner_id") or default_owner or "").strip()

    missing = [
        name
        for name, value in (("item_id", item_id), ("source_url", source_url), ("owner_id", owner_id))
        if not value
    ]
    if missing:
        raise ValueError(f"Item #{index} is missing {', '.join(missing)}")

    return WorkItem(
        source_url=source_url,
        owner_id=owner_id,
        item_id=item_id,
        original_status=status,
    )


def load_work_items_from_file(path: str, default_owner: Optional[str] = None) -> List[WorkItem]:
    """Load every pending item from the items file."""
    _, records = _read_records(path)
    items: List[WorkItem] = []
    for index, record in enumerate(records):
        item = parse_work_item(record, index, default_owner)
        if item is not None:
            items.append(item)
    return items


class StatusReporter:
    def report_outcome(self, outcome: ProcessingOutcome) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class JsonFileStatusReporter(StatusReporter):
    """Writes terminal statuses back into the items file."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()

    def report_outcome(self, outcome: ProcessingOutcome) -> None:
        with self._lock:
            document, records = _read_records(self.path)
            record = self._find_record(records, outcome.item_id)
            if record is None:
                print(
                    f"Warning: item {outcome.item_id} is no longer in {self.path}; status not written",
                    file=sys.stderr,
                )
                return
            record.update(self._status_fields(outcome))
            self._write(document)

    @staticmethod
    def _find_record(records: List[Any], item_id: str) -> Optional[Dict[str, Any]]:
        for record in records:
            if isinstance(record, dict) and str(record.get("item_id") or "").strip() == item_id:
                return record
        return None

    @staticmethod
    def _status_fields(outcome: ProcessingOutcome) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }
        if outcome.success:
            fields.update(
                status=STATUS_SUCCEEDED,
                storage_path=outcome.storage_path,
                error_message=None,
            )
        else:
            fields.update(
                status=STATUS_FAILED,
                error_message=outcome.error_message or "Unknown processing error",
            )
        return fields

    def _write(self, document: Any) -> None:
        temp_path = f"{self.path}.tmp"
        try:
            with open(temp_path, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2, ensure_ascii=False)
                handle.write("\n")
            os.replace(temp_path, self.path)
        except OSError:
            with contextlib.suppress(OSError):
                os.remove(temp_path)
            raise
