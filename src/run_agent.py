import argparse
import logging
import os
import sys
from typing import List, Optional

from config import ReconConfig
from errorlog import ErrorLog
from errors import ReconciliationConfigError
from ingest import import_file
from mapping import load_column_map
from match import DiscrepancyDetector
from pricing import find_price_mismatches
from reconcile import reconcile
from report import write_outputs
from rules import load_rules

logger = logging.getLogger("run_agent")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    defaults = ReconConfig()
    p = argparse.ArgumentParser(description="Reconcile a hub invoice export against a vendor invoice.")
    p.add_argument("--hub", default=defaults.hub_path, help="hub (partner) invoice CSV")
    p.add_argument("--vendor", default=defaults.vendor_path, help="vendor invoice CSV")
    p.add_argument("--mode", choices=["keys", "fields", "prices"], default=defaults.mode)
    p.add_argument("--config", default=defaults.rules_path, help="settings JSON")
    p.add_argument("--output-dir", default=defaults.outputs_dir)
    p.add_argument("--positional", action="store_true",
                   help="fields mode: compare row i against row i instead of by key")
    p.add_argument("--no-fuzzy-columns", action="store_true",
                   help="fail instead of renaming near-miss column headers")
    p.add_argument("--verbose", "-v", action="store_true")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    cfg = ReconConfig(hub_path=args.hub, vendor_path=args.vendor, outputs_dir=args.output_dir,
                      rules_path=args.config, mode=args.mode,
                      allow_fuzzy_columns=not args.no_fuzzy_columns)

    for path in (cfg.hub_path, cfg.vendor_path):
        if not os.path.exists(path):
            print(f"Input file not found: {path}", file=sys.stderr)
            return 1

    rules = load_rules(cfg.rules_path)
    log = ErrorLog(rules.validation.max_detailed_rows)

    try:
        mappings = load_column_map(rules.reconciliation.column_map_path)
        hub = import_file(cfg.hub_path, rules, log, mappings, cfg.allow_fuzzy_columns)
        vendor = import_file(cfg.vendor_path, rules, log, mappings, cfg.allow_fuzzy_columns)
    except ReconciliationConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    table_text = None
    if cfg.mode == "fields":
        detector = DiscrepancyDetector.from_options(rules.validation)
        if args.positional:
            detector.compare(hub.table, vendor.table)
        else:
            detector.compare_by_key(hub.table, vendor.table, rules.reconciliation.key_columns)
        table = detector.to_frame()
        table_text = detector.to_csv_text()
        summary_text = detector.summary_text()
        summary = {"rows_compared": detector.rows_compared,
                   "discrepancies": len(detector.discrepancies),
                   "groups": dict(detector.summary)}
    elif cfg.mode == "prices":
        table = find_price_mismatches(hub.table, vendor.table, log,
                                      rules.reconciliation.excluded_category,
                                      rules.reconciliation.amount_tolerance)
        summary_text = f"Price mismatches: {len(table)}"
        summary = {"price_mismatches": int(len(table))}
    else:
        result = reconcile(hub.table, vendor.table, rules.reconciliation, log)
        table = result.table
        summary_text = result.summary.to_text()
        summary = result.summary.as_dict()

    for imported in (hub, vendor):
        if imported.quality is not None:
            summary_text += f"\n\n[{imported.file_name}]\n{imported.quality.summary()}"

    paths = write_outputs(cfg.outputs_dir, cfg.mode, table, summary_text, summary, log, table_text)

    print(f"Wrote outputs to {cfg.outputs_dir}/")
    print(summary_text)
    print(f"Result rows: {len(table)} -> {paths['table']}")
    print(f"Error log: {len(log.history)} entries -> {paths['error_log']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
