import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

import pandas as pd

from errorlog import LogSink, Severity
from mapping import (
    CANONICAL_COLUMNS, SourceMapping, SourceType, detect_source_type, load_column_map,
    map_to_canonical, require_columns,
)
from quality import QualityReport, validate
from rules import Rules
from standardize import standardize

logger = logging.getLogger(__name__)


def load_csv(path: str) -> pd.DataFrame:
    """Every cell as text; BOM and blank lines tolerated."""
    df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig",
                     skip_blank_lines=True)
    df.columns = [str(c).strip() for c in df.columns]
    return df.fillna("")


@dataclass
class ImportResult:
    path: str
    source_type: SourceType
    table: pd.DataFrame
    quality: Optional[QualityReport] = None

    @property
    def file_name(self) -> str:
        return os.path.basename(self.path)


def import_file(path: str,
                rules: Rules,
                log: LogSink,
                mappings: Optional[Dict[SourceType, SourceMapping]] = None,
                allow_fuzzy: bool = True) -> ImportResult:
    """
    raw CSV -> normalized -> quality checked -> required columns resolved ->
    canonical table. Configuration faults raise; data issues are only logged.
    """
    name = os.path.basename(path)
    source = detect_source_type(path)
    if mappings is None:
        mappings = load_column_map(rules.reconciliation.column_map_path)

    try:
        raw = load_csv(path)
    except pd.errors.EmptyDataError:
        log.record(Severity.ERROR, 0, "", "File is empty", "", name)
        return ImportResult(path, source, pd.DataFrame(columns=CANONICAL_COLUMNS, dtype=object))

    logger.info("Loaded %s: %d rows, %d columns (%s)", name, len(raw), len(raw.columns), source.value)
    if raw.empty:
        log.record(Severity.ERROR, 0, "", "File has no data rows", "", name)

    table = standardize(raw, log, name)
    report = validate(table, log, name, rules.validation.blank_threshold)

    mapping = mappings.get(source)
    if mapping is not None:
        required = mapping.required_source_columns(rules.reconciliation.key_columns)
        table = require_columns(table, name, required, log, allow_fuzzy=allow_fuzzy)

    canonical = map_to_canonical(table, source, mappings, log, name)
    logger.info("Mapped %s to %d canonical rows", name, len(canonical))
    return ImportResult(path, source, canonical, report)
