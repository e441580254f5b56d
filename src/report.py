import json
import os
from typing import Any, Dict, Optional

import pandas as pd

from errorlog import ErrorLog

TABLE_FILES = {
    "keys": "reconciliation.csv",
    "fields": "discrepancies.csv",
    "prices": "price_mismatches.csv",
}


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def write_outputs(outputs_dir: str,
                  mode: str,
                  table: pd.DataFrame,
                  summary_text: str,
                  summary: Dict[str, Any],
                  log: ErrorLog,
                  table_text: Optional[str] = None) -> Dict[str, str]:
    """
    Writes the result table, the text and JSON summaries and the full error
    log. ``table_text`` replaces the plain CSV dump when the caller already
    rendered the table (e.g. with a leading summary line).
    """
    ensure_dir(outputs_dir)
    paths = {
        "table": os.path.join(outputs_dir, TABLE_FILES.get(mode, f"{mode}.csv")),
        "summary_text": os.path.join(outputs_dir, "recon_summary.txt"),
        "summary_json": os.path.join(outputs_dir, "recon_summary.json"),
        "error_log": os.path.join(outputs_dir, "error_log.csv"),
    }

    if table_text is not None:
        with open(paths["table"], "w", encoding="utf-8", newline="") as f:
            f.write(table_text)
    else:
        table.to_csv(paths["table"], index=False)

    with open(paths["summary_text"], "w", encoding="utf-8") as f:
        f.write(summary_text.rstrip("\n") + "\n")

    payload = dict(summary)
    payload["mode"] = mode
    payload["result_rows"] = int(len(table))
    payload["errors"] = log.error_summary
    payload["warnings"] = log.warning_summary
    with open(paths["summary_json"], "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, default=str)

    log.export_csv(paths["error_log"])
    return paths
