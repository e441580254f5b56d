from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ReconConfig:
    hub_path: str = "data/raw/IND_hub_invoice.csv"
    vendor_path: str = "data/raw/G0_vendor_invoice.csv"
    outputs_dir: str = "outputs"
    rules_path: Optional[str] = None    # None -> env var or config/recon_config.json

    mode: str = "keys"                  # keys | fields | prices
    allow_fuzzy_columns: bool = True
