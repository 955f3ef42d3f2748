"""Plain-text Form 1040 summary.

Lays out a computed return the way the paper Form 1040 is organized:
income, deductions, tax, credits, payments, then refund or amount owed.
"""

from typing import List, Optional

from .data_extractor import ExtractionResult
from .models import TaxReturnResult


def fmt(amount: float) -> str:
    """Format amount as currency."""
    if amount < 0:
        return f"-${abs(amount):,.2f}"
    return f"${amount:,.2f}"


def _sep(char: str = "=", length: int = 72) -> str:
    return char * length


def _line(label: str, amount, width: int = 55) -> str:
    """Format a single line item."""
    return f"  {label:<{width}} {fmt(amount) if isinstance(amount, (int, float)) else amount:>15}"


def generate_extraction_report(results: List[ExtractionResult]) -> str:
    """One block per extracted document, with the status and any warnings."""
    lines = []
    lines.append("")
    lines.append(_sep("-", 72))
    lines.append("  W-2 EXTRACTION")
    lines.append(_sep("-", 72))

    for result in results:
        lines.append(f"\n  {result.source_file or '(text)'}")
        lines.append(f"    status: {result.status.value}   confidence: {result.confidence:.2f}"
                     f"{'   (needs review)' if result.low_confidence else ''}")
        for key, value in result.field_map().items():
            if isinstance(value, float):
                lines.append(_line(f"  {key}", value))
            elif value is not None:
                lines.append(_line(f"  {key}", str(value)))
        for warning in result.warnings:
            lines.append(f"    ! {warning}")

    return "\n".join(lines)


def generate_federal_report(result: TaxReturnResult, bracket_breakdown: Optional[list] = None) -> str:
    """Generate a report mimicking Form 1040."""
    taxpayer = result.taxpayer
    lines = []
    lines.append("")
    lines.append(_sep("=", 72))
    lines.append(f"  FORM {result.form_type} - U.S. Individual Income Tax Return (Tax Year {result.tax_year})")
    lines.append(_sep("=", 72))
    lines.append(f"  Taxpayer:       {taxpayer.name}")
    status_note = " (defaulted)" if taxpayer.filing_status_defaulted else ""
    lines.append(f"  Filing Status:  {taxpayer.filing_status.value}{status_note}")
    if result.dependents:
        lines.append(f"  Dependents:     {', '.join(d.name for d in result.dependents)}")

    lines.append("\n  INCOME")
    lines.append("  " + "-" * 68)
    for w2 in result.w2_information:
        lines.append(_line(f"     W-2 {w2.employer}", w2.wages))
    lines.append(_line("1.   Wages, salaries, tips", result.income.wages))
    lines.append(_line("9.   Total Income", result.income.total_income))
    lines.append(_line("11.  Adjusted Gross Income (AGI)", result.income.adjusted_gross_income))

    lines.append("")
    lines.append("  DEDUCTIONS (STANDARD)")
    lines.append("  " + "-" * 68)
    lines.append(_line("12.  Standard Deduction", result.deductions.standard_deduction))
    lines.append(_line("15.  Taxable Income", result.deductions.taxable_income))

    lines.append("")
    lines.append("  TAX COMPUTATION")
    lines.append("  " + "-" * 68)
    if bracket_breakdown:
        lines.append("  Tax Bracket Breakdown:")
        for b in bracket_breakdown:
            rate_pct = f"{b['rate']*100:.1f}%"
            lines.append(f"    {b['bracket']:>30}  @{rate_pct:>6}  = {fmt(b['tax']):>12}")
        lines.append("  " + "-" * 68)
    lines.append(_line("16.  Tax", result.tax.base_tax))
    lines.append(_line("     Marginal Rate", f"{result.tax.marginal_rate*100:.1f}%"))
    lines.append(_line("     Effective Rate", f"{result.tax.effective_rate*100:.2f}%"))

    lines.append("")
    lines.append("  CREDITS")
    lines.append("  " + "-" * 68)
    lines.append(_line("21.  Total Credits", result.credits.total_credits))
    lines.append(_line("22.  Tax After Credits", result.credits.tax_after_credits))

    lines.append("")
    lines.append("  PAYMENTS")
    lines.append("  " + "-" * 68)
    lines.append(_line("25a. Federal Tax Withheld (W-2)", result.payments.federal_income_tax_withheld))
    lines.append(_line("33.  Total Payments", result.payments.total_payments))

    lines.append("\n  " + "=" * 68)
    summary = result.summary
    if summary.is_refund:
        lines.append(_line("FEDERAL REFUND", summary.refund_amount))
    else:
        lines.append(_line("FEDERAL TAX OWED", summary.amount_owed))

    return "\n".join(lines)
