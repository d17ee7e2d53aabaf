from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from typing import Any, Iterable

import pandas as pd

FLOW_COLUMNS = ["start", "end", "length", "duration_s"]


@dataclass(frozen=True)
class FlowRecord:
    start: float
    end: float
    length: int
    # monotonic clock delta; wall-clock start/end may jump
    elapsed: float | None = None

    @property
    def duration(self) -> float:
        if self.elapsed is not None:
            return self.elapsed
        return self.end - self.start

    def to_dict(self) -> dict[str, Any]:
        row: dict[str, Any] = {"start": self.start, "end": self.end, "length": self.length}
        if self.elapsed is not None:
            row["elapsed"] = self.elapsed
        return row


class FlowLog:
    """Append-only record of completed flows, in completion order.

    Appends may come from any flow thread. Reads are only valid once every
    flow thread has been joined.
    """

    def __init__(self, records: Iterable[FlowRecord] = ()) -> None:
        self._lock = threading.Lock()
        self._records: list[FlowRecord] = list(records)
        self.start: float | None = None
        self.end: float | None = None

    def append(self, record: FlowRecord) -> None:
        with self._lock:
            self._records.append(record)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> list[FlowRecord]:
        return list(self._records)

    def durations(self) -> list[float]:
        return [record.duration for record in self._records]

    def total_length(self) -> int:
        return sum(record.length for record in self._records)

    @property
    def elapsed_s(self) -> float:
        if self.start is None or self.end is None:
            return 0.0
        return max(self.end - self.start, 0.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start,
            "end": self.end,
            "flows": [record.to_dict() for record in self._records],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "FlowLog":
        flows = payload.get("flows") or []
        log = cls(
            FlowRecord(
                start=float(f["start"]),
                end=float(f["end"]),
                length=int(f["length"]),
                elapsed=float(f["elapsed"]) if f.get("elapsed") is not None else None,
            )
            for f in flows
        )
        log.start = payload.get("start")
        log.end = payload.get("end")
        return log

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, data: str | bytes) -> "FlowLog":
        return cls.from_dict(json.loads(data))

    def to_dataframe(self) -> pd.DataFrame:
        rows = [
            {
                "start": record.start,
                "end": record.end,
                "length": record.length,
                "duration_s": record.duration,
            }
            for record in self._records
        ]
        if not rows:
            return pd.DataFrame(columns=FLOW_COLUMNS)
        return pd.DataFrame(rows, columns=FLOW_COLUMNS)


__all__ = ["FlowLog", "FlowRecord"]
