"""Load tax tables, taxpayer profiles and service settings."""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

import yaml

from .federal_tax import DEFAULT_TAX_TABLES, Bracket, TaxTables
from .models import Address, Dependent, FilingStatus, TaxProfile

logger = logging.getLogger(__name__)

# Flat filing fee charged before submission, in dollars
FILING_FEE = 49.99


@dataclass
class AppSettings:
    """Service settings, read from TAXFILER_* environment variables."""
    database_path: str = "taxfiler.db"
    tax_tables_path: Optional[str] = None
    tax_year: Optional[int] = None
    upload_dir: Optional[str] = None
    max_upload_bytes: int = 10 * 1024 * 1024
    filing_fee: float = FILING_FEE

    @classmethod
    def from_env(cls) -> "AppSettings":
        tax_year = os.getenv("TAXFILER_TAX_YEAR")
        return cls(
            database_path=os.getenv("TAXFILER_DATABASE", "taxfiler.db"),
            tax_tables_path=os.getenv("TAXFILER_TAX_TABLES") or None,
            tax_year=int(tax_year) if tax_year else None,
            upload_dir=os.getenv("TAXFILER_UPLOAD_DIR") or None,
        )

    def load_tables(self) -> TaxTables:
        if self.tax_tables_path:
            return load_tax_tables(self.tax_tables_path)
        return DEFAULT_TAX_TABLES


def _status_key(key: str) -> FilingStatus:
    status = FilingStatus.parse(key)
    if status is None:
        raise ValueError(f"Unknown filing status in tax tables: {key!r}")
    return status


def load_tax_tables(path: str) -> TaxTables:
    """
    Load a versioned deduction/bracket table from YAML.

    Args:
        path: Path to the YAML file

    Returns:
        TaxTables for the year named in the file

    Raises:
        ValueError: the file is missing the year, the single-filer entries,
            or has brackets that are not contiguous from zero
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    if "tax_year" not in raw:
        raise ValueError(f"{path}: tax_year is required")

    deductions = {
        _status_key(k): float(v)
        for k, v in (raw.get("standard_deduction") or {}).items()
    }

    brackets = {}
    for k, rows in (raw.get("brackets") or {}).items():
        schedule = []
        expected_lower = 0.0
        for row in rows:
            lower = float(row["min"])
            upper = float("inf") if row.get("max") is None else float(row["max"])
            if lower != expected_lower or upper <= lower:
                raise ValueError(f"{path}: brackets for {k} are not contiguous at {lower:,.0f}")
            schedule.append(Bracket(lower, upper, float(row["rate"])))
            expected_lower = upper
        brackets[_status_key(k)] = schedule

    if FilingStatus.SINGLE not in deductions or FilingStatus.SINGLE not in brackets:
        raise ValueError(f"{path}: single filer deduction and brackets are required")

    return TaxTables(
        tax_year=int(raw["tax_year"]),
        standard_deductions=deductions,
        brackets=brackets,
    )


@dataclass
class TaxProfileConfig:
    """Taxpayer profile loaded from YAML (for command-line runs)."""
    tax_year: int = DEFAULT_TAX_TABLES.tax_year
    taxpayer_name: str = "Taxpayer"
    profile: TaxProfile = field(default_factory=TaxProfile)
    documents: List[str] = field(default_factory=list)
    tax_tables: Optional[str] = None


def load_config(path: str) -> Optional[TaxProfileConfig]:
    """
    Load a taxpayer profile from a YAML file.

    Args:
        path: Path to the YAML config file.

    Returns:
        TaxProfileConfig if successful, None otherwise.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError:
        logger.error("Config file not found: %s", path)
        return None
    except yaml.YAMLError as e:
        logger.error("Error reading config file %s: %s", path, e)
        return None

    if not raw:
        return None

    taxpayer = raw.get("taxpayer", {}) or {}
    deps = []
    for d in taxpayer.get("dependents", []) or []:
        if isinstance(d, str):
            deps.append(Dependent(name=d))
        elif isinstance(d, dict):
            deps.append(Dependent.from_dict(d))

    filing_status = FilingStatus.parse(taxpayer.get("filing_status"))
    if taxpayer.get("filing_status") and filing_status is None:
        logger.warning("Unknown filing status %r; single will be used", taxpayer.get("filing_status"))

    profile = TaxProfile(
        filing_status=filing_status,
        tax_classification=taxpayer.get("tax_classification") or "individual",
        ssn=str(taxpayer.get("ssn") or ""),
        ein=str(taxpayer.get("ein") or ""),
        address=Address.from_dict(taxpayer.get("address")),
        dependents=deps,
    )

    config = TaxProfileConfig(
        tax_year=int(raw.get("tax_year", DEFAULT_TAX_TABLES.tax_year)),
        taxpayer_name=taxpayer.get("name", "Taxpayer"),
        profile=profile,
        documents=list(raw.get("documents", []) or []),
        tax_tables=raw.get("tax_tables"),
    )

    if profile.ssn or any(d.ssn for d in deps):
        logger.warning("Config file %s contains SSN data; keep it out of version control", path)

    return config
