"""Collaborator protocols: bit sources, storage, and calibration side signals."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from random import Random
from typing import Any, List, Mapping, Protocol, Sequence

import psutil

from rngstats.models import Trial, utc_now


class BitSource(Protocol):
    def generate_bits(self, count: int) -> List[int]:
        ...


class TrialRepository(Protocol):
    """Read side of the storage collaborator; the engine never writes trials."""

    def fetch_range(self, start: datetime, end: datetime) -> List[Trial]:
        ...

    def fetch_session(self, session_id: str) -> List[Trial]:
        ...


class ReportStore(Protocol):
    def save(self, report: Any, metadata: Mapping[str, Any] | None = None) -> str:
        ...


class EnvironmentProbe(Protocol):
    def read(self) -> Mapping[str, float]:
        ...


@dataclass(frozen=True)
class SystemResources:
    cpu_percent: float
    memory_percent: float
    disk_percent: float


class ResourceProbe(Protocol):
    def read(self) -> SystemResources:
        ...


class PseudoRandomSource:
    """Software stand-in for a hardware generator, seedable for tests."""

    def __init__(self, seed: int | None = None) -> None:
        self._random = Random(seed)

    def generate_bits(self, count: int) -> List[int]:
        if count <= 0:
            return []
        word = self._random.getrandbits(count)
        return [(word >> shift) & 1 for shift in range(count)]


class PsutilResourceProbe:
    def __init__(self, disk_path: str = "/") -> None:
        self.disk_path = disk_path

    def read(self) -> SystemResources:
        return SystemResources(
            cpu_percent=float(psutil.cpu_percent(interval=None)),
            memory_percent=float(psutil.virtual_memory().percent),
            disk_percent=float(psutil.disk_usage(self.disk_path).percent),
        )


def trials_from_bits(
    bits: Sequence[int],
    bits_per_trial: int,
    session_id: str,
    start: datetime | None = None,
    interval: timedelta = timedelta(seconds=1),
    mode: str = "calibration",
    intention: str = "baseline",
) -> List[Trial]:
    """Group consecutive bits into trials; a trailing partial group is dropped."""

    start = start or utc_now()
    trials: List[Trial] = []
    for number, offset in enumerate(range(0, len(bits) - bits_per_trial + 1, bits_per_trial)):
        trials.append(
            Trial(
                timestamp=start + interval * number,
                value=sum(bits[offset : offset + bits_per_trial]),
                session_id=session_id,
                sequence_number=number,
                mode=mode,
                intention=intention,
            )
        )
    return trials


__all__ = [
    "BitSource",
    "TrialRepository",
    "ReportStore",
    "EnvironmentProbe",
    "SystemResources",
    "ResourceProbe",
    "PseudoRandomSource",
    "PsutilResourceProbe",
    "trials_from_bits",
]
