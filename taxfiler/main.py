"""Command line entry point: extract W-2 data, compute a return, or run the API."""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config_loader import AppSettings, TaxProfileConfig, load_config, load_tax_tables
from .data_extractor import TaxDataExtractor
from .document_parser import DocumentParser
from .errors import FilingError
from .federal_tax import DEFAULT_TAX_TABLES, FederalTaxCalculator, compute_return
from .models import DocumentType, ExtractedDocument, FilingStatus, TaxProfile
from .report_generator import generate_extraction_report, generate_federal_report


def scan_local_folder(folder_path: str) -> List[str]:
    """Recursively collect supported documents under a folder."""
    folder = Path(folder_path)
    if not folder.is_dir():
        print(f"Error: Folder not found: {folder_path}")
        return []

    print(f"\nScanning folder: {folder_path}")
    supported = DocumentParser.supported_extensions()
    files = []
    for file_path in sorted(folder.rglob("*")):
        if file_path.is_file() and file_path.suffix.lower() in supported:
            files.append(str(file_path))
            print(f"  Found: {file_path.relative_to(folder)}")
    print(f"\nTotal files found: {len(files)}")
    return files


def _collect_files(args, config: Optional[TaxProfileConfig]) -> List[str]:
    files = list(args.files or [])
    if args.local_folder:
        files.extend(scan_local_folder(args.local_folder))
    if not files and config:
        files.extend(config.documents)
    return files


def run_extract(args) -> int:
    files = _collect_files(args, None)
    if not files:
        print("No documents given. Use --files or --local-folder.")
        return 1
    extractor = TaxDataExtractor()
    results = [extractor.extract_file(path) for path in files]
    print(generate_extraction_report(results))
    return 0


def run_compute(args) -> int:
    config = None
    if args.config:
        config = load_config(args.config)
        if config is None:
            print(f"Could not load config: {args.config}")
            return 1
        print(f"\nLoaded config: {args.config}")
        print(f"  Taxpayer: {config.taxpayer_name}")
        print(f"  Tax year: {config.tax_year}")

    profile = config.profile if config else TaxProfile()
    # CLI overrides take precedence over config
    if args.filing_status:
        profile.filing_status = FilingStatus.parse(args.filing_status)

    tables_path = args.tax_tables or (config.tax_tables if config else None)
    tables = load_tax_tables(tables_path) if tables_path else DEFAULT_TAX_TABLES
    tax_year = args.tax_year or (config.tax_year if config else tables.tax_year)

    files = _collect_files(args, config)
    if not files:
        print("No documents given. Use --files, --local-folder or the config documents list.")
        return 1

    print(f"\nProcessing {len(files)} document(s)...")
    extractor = TaxDataExtractor()
    results = [extractor.extract_file(path) for path in files]
    print(generate_extraction_report(results))

    documents = [
        ExtractedDocument(
            doc_type=DocumentType.W2,
            filename=Path(r.source_file).name,
            fields=r.fields,
            extraction_status=r.status.value,
            error=r.error,
        )
        for r in results
    ]
    name = config.taxpayer_name if config else "Taxpayer"

    try:
        result = compute_return(profile, documents, name, tax_year, tables)
    except FilingError as e:
        print(f"Error: {e}")
        return 1

    calculator = FederalTaxCalculator(result.taxpayer.filing_status, tables)
    _, breakdown = calculator.calculate_progressive_tax(result.deductions.taxable_income)
    print(generate_federal_report(result, breakdown))
    return 0


def run_serve(args) -> int:
    from .web_app import create_app

    settings = AppSettings.from_env()
    if args.database:
        settings.database_path = args.database
    create_app(settings).run(host=args.host, port=args.port)
    return 0


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Tax filing tool - extract W-2 data and compute Form 1040"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_document_args(p):
        p.add_argument(
            "--files", nargs="+",
            help="Local file paths to process (PDF, images, CSV, Excel)"
        )
        p.add_argument(
            "--local-folder",
            help="Local folder path to scan recursively for W-2 documents"
        )

    extract = sub.add_parser("extract", help="Extract W-2 fields from documents")
    add_document_args(extract)

    compute = sub.add_parser("compute", help="Compute a Form 1040 from W-2 documents")
    add_document_args(compute)
    compute.add_argument(
        "--config",
        default=None,
        help="Path to YAML taxpayer profile (see config/tax_profile.example.yaml)"
    )
    compute.add_argument(
        "--filing-status",
        choices=[s.value for s in FilingStatus],
        default=None,
        help="Tax filing status"
    )
    compute.add_argument("--tax-year", type=int, default=None, help="Tax year being filed")
    compute.add_argument("--tax-tables", default=None, help="YAML deduction/bracket tables")

    serve = sub.add_parser("serve", help="Run the filing API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)
    serve.add_argument("--database", default=None, help="SQLite database path")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    commands = {"extract": run_extract, "compute": run_compute, "serve": run_serve}
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
