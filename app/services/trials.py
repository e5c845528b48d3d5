"""Trial storage collaborator backed by a JSON file or the SQL database."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List

from sqlalchemy import func, select

from app.core.config import get_engine_config, get_settings
from app.core.db import session_scope
from app.core.models import TrialORM
from rngstats.models import Trial, sort_trials

logger = logging.getLogger(__name__)

# serializes merge-and-replace cycles on trials.json across threads
_file_lock = threading.Lock()


def _trial_file() -> Path:
    return get_settings().trial_storage_path


def _ensure_data_dir() -> None:
    data_dir = get_settings().data_dir
    if not data_dir.exists():
        data_dir.mkdir(parents=True, exist_ok=True)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _trial_to_dict(trial: Trial) -> Dict[str, object]:
    return {
        "timestamp": _as_utc(trial.timestamp).isoformat(),
        "value": trial.value,
        "session_id": trial.session_id,
        "sequence_number": trial.sequence_number,
        "mode": trial.mode,
        "intention": trial.intention,
    }


def _dict_to_trial(payload: Dict[str, object]) -> Trial:
    return Trial(
        timestamp=_as_utc(datetime.fromisoformat(str(payload["timestamp"]))),
        value=int(payload["value"]),
        session_id=str(payload["session_id"]),
        sequence_number=int(payload["sequence_number"]),
        mode=str(payload.get("mode", "standard")),
        intention=str(payload.get("intention", "baseline")),
    )


def _orm_to_trial(row: TrialORM) -> Trial:
    return Trial(
        timestamp=_as_utc(row.timestamp),
        value=row.value,
        session_id=row.session_id,
        sequence_number=row.sequence_number,
        mode=row.mode,
        intention=row.intention,
    )


def _key(trial: Trial) -> tuple[str, int]:
    return trial.session_id, trial.sequence_number


def _load_trials_from_file() -> List[Trial]:
    trial_path = _trial_file()
    if not trial_path.exists():
        return []
    data = json.loads(trial_path.read_text())
    return [_dict_to_trial(item) for item in data]


def _save_trials_to_file(trials: List[Trial]) -> int:
    _ensure_data_dir()
    with _file_lock:
        merged = {_key(trial): trial for trial in _load_trials_from_file()}
        before = len(merged)
        for trial in trials:
            merged[_key(trial)] = trial
        serialized = [
            _trial_to_dict(trial) for trial in sort_trials(list(merged.values()))
        ]
        trial_path = _trial_file()
        tmp_path = trial_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(serialized))
        tmp_path.replace(trial_path)
    return len(merged) - before


def _save_trials_to_db(trials: List[Trial]) -> int:
    inserted = 0
    with session_scope() as session:
        for trial in trials:
            record = session.scalars(
                select(TrialORM).where(
                    TrialORM.session_id == trial.session_id,
                    TrialORM.sequence_number == trial.sequence_number,
                )
            ).first()
            if record is None:
                session.add(
                    TrialORM(
                        session_id=trial.session_id,
                        sequence_number=trial.sequence_number,
                        timestamp=_as_utc(trial.timestamp),
                        value=trial.value,
                        mode=trial.mode,
                        intention=trial.intention,
                    )
                )
                inserted += 1
            else:
                record.timestamp = _as_utc(trial.timestamp)
                record.value = trial.value
                record.mode = trial.mode
                record.intention = trial.intention
    return inserted


def out_of_range_trials(trials: Iterable[Trial]) -> List[Trial]:
    """Return the trials whose value lies outside ``[0, bits_per_trial]``."""

    bits_per_trial = get_engine_config().analysis.bits_per_trial
    return [trial for trial in trials if not 0 <= trial.value <= bits_per_trial]


def save_trials(trials: Iterable[Trial]) -> int:
    """Persist trials with the configured backend; returns the number of new rows.

    Trials are keyed by ``(session_id, sequence_number)``; re-sent trials
    replace the stored copy. A batch holding any out-of-range value is
    rejected whole with ``ValueError``.
    """

    batch = list(trials)
    if not batch:
        return 0
    rejected = out_of_range_trials(batch)
    if rejected:
        raise ValueError(
            f"{len(rejected)} trial value(s) outside [0, "
            f"{get_engine_config().analysis.bits_per_trial}]"
        )
    if get_settings().use_database_storage:
        inserted = _save_trials_to_db(batch)
    else:
        inserted = _save_trials_to_file(batch)
    logger.info("Stored %d trials (%d new)", len(batch), inserted)
    return inserted


def load_trials(
    start: datetime | None = None,
    end: datetime | None = None,
    session_id: str | None = None,
) -> List[Trial]:
    """Return stored trials in timestamp order, filtered by range and session."""

    if get_settings().use_database_storage:
        query = select(TrialORM)
        if start is not None:
            query = query.where(TrialORM.timestamp >= _as_utc(start))
        if end is not None:
            query = query.where(TrialORM.timestamp <= _as_utc(end))
        if session_id is not None:
            query = query.where(TrialORM.session_id == session_id)
        query = query.order_by(TrialORM.timestamp.asc(), TrialORM.sequence_number.asc())
        with session_scope() as session:
            rows = session.scalars(query).all()
            return [_orm_to_trial(row) for row in rows]

    trials = _load_trials_from_file()
    if start is not None:
        trials = [trial for trial in trials if trial.timestamp >= _as_utc(start)]
    if end is not None:
        trials = [trial for trial in trials if trial.timestamp <= _as_utc(end)]
    if session_id is not None:
        trials = [trial for trial in trials if trial.session_id == session_id]
    return sort_trials(trials)


def count_trials() -> int:
    if get_settings().use_database_storage:
        with session_scope() as session:
            total = session.scalar(select(func.count()).select_from(TrialORM))
        return int(total or 0)
    return len(_load_trials_from_file())


class StoredTrialRepository:
    """TrialRepository over the configured backend."""

    def fetch_range(self, start: datetime, end: datetime) -> List[Trial]:
        return load_trials(start=start, end=end)

    def fetch_session(self, session_id: str) -> List[Trial]:
        return load_trials(session_id=session_id)


__all__ = [
    "out_of_range_trials",
    "save_trials",
    "load_trials",
    "count_trials",
    "StoredTrialRepository",
]
