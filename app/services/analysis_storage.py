"""Helpers for persisting report documents to the file or SQL backend."""

from __future__ import annotations

import json
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping

from sqlalchemy import select

from app.core.config import get_settings
from app.core.db import session_scope
from app.core.models import ReportORM
from rngstats.reports import Report, to_document

# serializes read-append-write cycles on reports.json across threads
_file_lock = threading.Lock()


def _json_ready(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Ensure payload keys/values are JSON friendly."""

    return json.loads(json.dumps(payload))


def _load_report_file() -> List[Dict[str, Any]]:
    report_path = get_settings().report_storage_path
    if not report_path.exists():
        return []
    return json.loads(report_path.read_text())


def _write_report_file(records: List[Dict[str, Any]]) -> None:
    settings = get_settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    report_path = settings.report_storage_path
    tmp_path = report_path.with_suffix(".tmp")
    tmp_path.write_text(json.dumps(records))
    tmp_path.replace(report_path)


def save_report_document(
    kind: str,
    result: Mapping[str, Any],
    metadata: Mapping[str, Any] | None = None,
) -> str:
    """Store a report document and return its record id."""

    created_at = datetime.now(timezone.utc)
    result = _json_ready(result)
    metadata = _json_ready(metadata or {})

    if get_settings().use_database_storage:
        with session_scope() as session:
            record = ReportORM(
                kind=kind,
                created_at=created_at,
                result=result,
                metadata_json=metadata,
            )
            session.add(record)
            session.flush()
            return str(record.id)

    record_id = uuid.uuid4().hex
    with _file_lock:
        records = _load_report_file()
        records.append(
            {
                "_id": record_id,
                "kind": kind,
                "created_at": created_at.isoformat(),
                "result": result,
                "metadata": metadata,
            }
        )
        _write_report_file(records)
    return record_id


def save_report(report: Report, metadata: Mapping[str, Any] | None = None) -> str:
    return save_report_document(type(report).kind, to_document(report), metadata)


def get_latest_report(kind: str) -> Dict[str, Any] | None:
    """Return the newest stored record for the given report kind."""

    if get_settings().use_database_storage:
        with session_scope() as session:
            record = session.scalars(
                select(ReportORM)
                .where(ReportORM.kind == kind)
                .order_by(ReportORM.created_at.desc(), ReportORM.id.desc())
            ).first()
            if not record:
                return None
            created_at = record.created_at
            return {
                "_id": str(record.id),
                "kind": record.kind,
                "created_at": created_at.isoformat()
                if isinstance(created_at, datetime)
                else created_at,
                "result": record.result,
                "metadata": record.metadata_json or {},
            }

    # appended in creation order
    matches = [record for record in _load_report_file() if record["kind"] == kind]
    return matches[-1] if matches else None


class StoredReportStore:
    """ReportStore over the configured backend."""

    def save(self, report: Report, metadata: Mapping[str, Any] | None = None) -> str:
        return save_report(report, metadata)


__all__ = [
    "save_report_document",
    "save_report",
    "get_latest_report",
    "StoredReportStore",
]
