"""
Structured log sink for per-row issues.

Every component receives a sink and calls ``record(...)``; nothing in the
engine writes to a process-wide accumulator. ``ErrorLog`` is the default
sink: it keeps the full history for export and a deduplicated display list
where repeated (severity, column, description) issues collapse into one
running summary entry after ``max_detailed_rows`` occurrences.
"""
import dataclasses
import logging
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Protocol, Tuple

import pandas as pd

logger = logging.getLogger("errorlog")

EXPORT_COLUMNS = ["Timestamp", "Severity", "Row", "Column", "Description",
                  "RawValue", "SourceFile", "Context"]


class Severity(str, Enum):
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"


_LEVELS = {
    Severity.INFO: logging.DEBUG,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    severity: Severity
    row: int
    column: str
    description: str
    raw_value: str = ""
    source_file: str = ""
    context: str = ""
    is_summary: bool = False

    def as_row(self) -> Dict[str, str]:
        return {
            "Timestamp": self.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            "Severity": self.severity.value,
            "Row": str(self.row),
            "Column": self.column,
            "Description": self.description,
            "RawValue": self.raw_value,
            "SourceFile": self.source_file,
            "Context": self.context,
        }


class LogSink(Protocol):
    def record(self, severity: Severity, row: int, column: str, message: str,
               raw: str = "", source: str = "", context: str = "") -> None:
        ...


class CollectingSink:
    """Keeps every record as-is. Handy in tests."""

    def __init__(self) -> None:
        self.entries: List[LogEntry] = []

    def record(self, severity, row, column, message, raw="", source="", context=""):
        self.entries.append(LogEntry(datetime.now(), Severity(severity), row, column,
                                     message, str(raw), source, context))

    def messages(self, severity: Optional[Severity] = None) -> List[str]:
        return [e.description for e in self.entries
                if severity is None or e.severity == severity]


class ErrorLog:
    DEFAULT_MAX_DETAILED_ROWS = 50

    def __init__(self, max_detailed_rows: int = DEFAULT_MAX_DETAILED_ROWS):
        self.max_detailed_rows = max_detailed_rows
        self._lock = threading.Lock()
        self._entries: List[LogEntry] = []
        self._history: List[LogEntry] = []
        self._counts: Counter = Counter()
        self._summary_index: Dict[Tuple[Severity, str, str], int] = {}
        self._by_severity: Dict[Severity, Counter] = {s: Counter() for s in Severity}

    # sink protocol
    def record(self, severity, row, column, message, raw="", source="", context=""):
        severity = Severity(severity)
        entry = LogEntry(datetime.now(), severity, int(row), column or "", message,
                         "" if raw is None else str(raw), source or "", context or "")
        key = (severity, entry.column, message)
        with self._lock:
            self._history.append(entry)
            self._by_severity[severity][message] += 1
            self._counts[key] += 1
            count = self._counts[key]
            if count <= self.max_detailed_rows:
                self._entries.append(entry)
                detailed = True
            else:
                extra = count - self.max_detailed_rows
                summary = dataclasses.replace(
                    entry,
                    row=0,
                    raw_value="",
                    context="",
                    description=f"{message} ({extra} additional rows)",
                    is_summary=True,
                )
                idx = self._summary_index.get(key)
                if idx is None:
                    self._summary_index[key] = len(self._entries)
                    self._entries.append(summary)
                else:
                    self._entries[idx] = summary
                detailed = False
        if detailed:
            logger.log(_LEVELS[severity], "row %s, %s: %s (%s)", entry.row,
                       entry.column or "-", message, entry.raw_value)

    def info(self, row, column, message, raw="", source="", context=""):
        self.record(Severity.INFO, row, column, message, raw, source, context)

    def warning(self, row, column, message, raw="", source="", context=""):
        self.record(Severity.WARNING, row, column, message, raw, source, context)

    def error(self, row, column, message, raw="", source="", context=""):
        self.record(Severity.ERROR, row, column, message, raw, source, context)

    @property
    def entries(self) -> List[LogEntry]:
        with self._lock:
            return list(self._entries)

    @property
    def history(self) -> List[LogEntry]:
        with self._lock:
            return list(self._history)

    @property
    def error_summary(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._by_severity[Severity.ERROR])

    @property
    def warning_summary(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._by_severity[Severity.WARNING])

    @property
    def has_errors(self) -> bool:
        with self._lock:
            return bool(self._by_severity[Severity.ERROR])

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._history.clear()
            self._counts.clear()
            self._summary_index.clear()
            for c in self._by_severity.values():
                c.clear()

    def to_frame(self, deduplicated: bool = True) -> pd.DataFrame:
        source = self.entries if deduplicated else self.history
        return pd.DataFrame([e.as_row() for e in source], columns=EXPORT_COLUMNS)

    def export_csv(self, path: str, deduplicated: bool = False) -> None:
        self.to_frame(deduplicated=deduplicated).to_csv(path, index=False)
