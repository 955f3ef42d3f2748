"""Federal Form 1040 computation."""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import NoDocumentsError, NoProfileError
from .models import (
    CreditSection, DeductionSection, DocumentType, ExtractedDocument, FilingStatus,
    IncomeSection, OtherTaxSection, PaymentSection, ReturnSummary, TaxProfile,
    TaxReturnResult, TaxSection, TaxpayerSection, W2Summary,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Bracket:
    """Income in [lower, upper) is taxed at rate."""
    lower: float
    upper: float
    rate: float


@dataclass
class TaxTables:
    """Standard deductions and bracket schedules for one tax year."""
    tax_year: int
    standard_deductions: Dict[FilingStatus, float]
    brackets: Dict[FilingStatus, List[Bracket]] = field(default_factory=dict)

    def standard_deduction(self, filing_status: FilingStatus) -> float:
        """Deduction for the status; statuses missing from the table use single."""
        if filing_status in self.standard_deductions:
            return self.standard_deductions[filing_status]
        return self.standard_deductions[FilingStatus.SINGLE]

    def brackets_for(self, filing_status: FilingStatus) -> List[Bracket]:
        """Bracket schedule for the status.

        Known gap: only single and married-joint schedules are defined, so
        married-separate, head-of-household and qualifying-widow returns are
        taxed on the single schedule.
        """
        if filing_status in self.brackets:
            return self.brackets[filing_status]
        return self.brackets[FilingStatus.SINGLE]


def _schedule(*rows: Tuple[float, float, float]) -> List[Bracket]:
    return [Bracket(lower, upper, rate) for lower, upper, rate in rows]


# Tax year 2024 tables. The deductions are the 2024 amounts; the bracket
# thresholds are the 2023 IRS schedule the service has always shipped with.
STANDARD_DEDUCTION_2024 = {
    FilingStatus.SINGLE: 14_600,
    FilingStatus.MARRIED_FILING_JOINTLY: 29_200,
    FilingStatus.MARRIED_FILING_SEPARATELY: 14_600,
    FilingStatus.HEAD_OF_HOUSEHOLD: 21_900,
    FilingStatus.QUALIFYING_WIDOW: 29_200,
}

FEDERAL_TAX_BRACKETS_2024 = {
    FilingStatus.SINGLE: _schedule(
        (0, 11_000, 0.10),
        (11_000, 44_725, 0.12),
        (44_725, 95_375, 0.22),
        (95_375, 182_050, 0.24),
        (182_050, 231_250, 0.32),
        (231_250, 578_125, 0.35),
        (578_125, float('inf'), 0.37),
    ),
    FilingStatus.MARRIED_FILING_JOINTLY: _schedule(
        (0, 22_000, 0.10),
        (22_000, 89_450, 0.12),
        (89_450, 190_750, 0.22),
        (190_750, 364_200, 0.24),
        (364_200, 462_500, 0.32),
        (462_500, 693_750, 0.35),
        (693_750, float('inf'), 0.37),
    ),
}

TAX_TABLES_2024 = TaxTables(
    tax_year=2024,
    standard_deductions=STANDARD_DEDUCTION_2024,
    brackets=FEDERAL_TAX_BRACKETS_2024,
)

DEFAULT_TAX_TABLES = TAX_TABLES_2024


def round_half_up(amount: float) -> int:
    """Round to the nearest whole dollar, halves away from zero."""
    return int(math.floor(amount + 0.5)) if amount >= 0 else -int(math.floor(-amount + 0.5))


class FederalTaxCalculator:
    """Progressive federal income tax for one filing status."""

    def __init__(self, filing_status: FilingStatus = FilingStatus.SINGLE,
                 tables: Optional[TaxTables] = None):
        self.filing_status = filing_status
        self.tables = tables or DEFAULT_TAX_TABLES
        self.brackets = self.tables.brackets_for(filing_status)
        self.standard_deduction = self.tables.standard_deduction(filing_status)

    def calculate_progressive_tax(self, taxable_income: float) -> Tuple[float, list]:
        """
        Walk the brackets in ascending order, taxing the slice of remaining
        income that fits in each.

        Args:
            taxable_income: Income after deductions

        Returns:
            Tuple of (unrounded tax, breakdown by bracket)
        """
        total_tax = 0.0
        breakdown = []
        remaining = taxable_income

        for bracket in self.brackets:
            if remaining <= 0:
                break
            portion = min(remaining, bracket.upper - bracket.lower)
            bracket_tax = portion * bracket.rate
            total_tax += bracket_tax
            remaining -= portion
            breakdown.append({
                'bracket': (f"${bracket.lower:,.0f} - ${bracket.upper:,.0f}"
                            if bracket.upper != float('inf') else f"${bracket.lower:,.0f}+"),
                'rate': bracket.rate,
                'income': portion,
                'tax': bracket_tax,
            })

        return total_tax, breakdown

    def compute_tax(self, taxable_income: float) -> int:
        """Bracket tax rounded to whole dollars."""
        tax, _ = self.calculate_progressive_tax(taxable_income)
        return round_half_up(tax)

    def calculate_marginal_rate(self, taxable_income: float) -> float:
        for bracket in self.brackets:
            if taxable_income < bracket.upper:
                return bracket.rate
        return self.brackets[-1].rate

    @staticmethod
    def calculate_effective_rate(total_tax: float, gross_income: float) -> float:
        if gross_income <= 0:
            return 0.0
        return total_tax / gross_income


@dataclass
class W2Totals:
    wages: float = 0.0
    federal_withheld: float = 0.0
    social_security_wages: float = 0.0
    medicare_wages: float = 0.0


def aggregate_w2s(w2_documents: Sequence[ExtractedDocument]) -> W2Totals:
    """Sum the core W-2 amounts; missing or malformed values count as zero."""
    totals = W2Totals()
    for doc in w2_documents:
        fields = doc.fields
        totals.wages += fields.amount('wages')
        totals.federal_withheld += fields.amount('federal_tax_withheld')
        totals.social_security_wages += fields.amount('social_security_wages')
        totals.medicare_wages += fields.amount('medicare_wages')
    return totals


def _w2_summary(doc: ExtractedDocument) -> W2Summary:
    fields = doc.fields
    return W2Summary(
        employer=fields.employer_name or 'Unknown',
        ein=fields.employer_ein or '',
        wages=fields.amount('wages'),
        federal_withheld=fields.amount('federal_tax_withheld'),
        social_security_wages=fields.amount('social_security_wages'),
        medicare_wages=fields.amount('medicare_wages'),
    )


def compute_return(
    profile: Optional[TaxProfile],
    w2_documents: Sequence[ExtractedDocument],
    filer_name: str,
    tax_year: int,
    tables: Optional[TaxTables] = None,
) -> TaxReturnResult:
    """
    Compute a complete Form 1040 from W-2 data and the filing profile.

    Args:
        profile: Taxpayer filing profile
        w2_documents: Extracted W-2 documents (must not be empty)
        filer_name: Taxpayer display name
        tax_year: Tax year being filed
        tables: Deduction and bracket tables; defaults to TAX_TABLES_2024

    Returns:
        TaxReturnResult

    Raises:
        NoDocumentsError: no W-2 documents were supplied
        NoProfileError: no filing profile exists
    """
    w2_documents = [d for d in w2_documents if d.doc_type == DocumentType.W2]
    if not w2_documents:
        raise NoDocumentsError()
    if profile is None:
        raise NoProfileError()

    tables = tables or DEFAULT_TAX_TABLES
    if tables.tax_year != tax_year:
        logger.warning("Computing tax year %s with %s tables", tax_year, tables.tax_year)

    totals = aggregate_w2s(w2_documents)

    filing_status = profile.filing_status or FilingStatus.SINGLE
    if profile.filing_status is None:
        logger.info("Filing status missing, defaulting to single")

    calculator = FederalTaxCalculator(filing_status, tables)

    income = IncomeSection(wages=totals.wages)
    agi = income.adjusted_gross_income
    standard_deduction = calculator.standard_deduction
    taxable_income = max(0, agi - standard_deduction)

    income_tax = calculator.compute_tax(taxable_income)
    refund_or_owed = totals.federal_withheld - income_tax

    return TaxReturnResult(
        tax_year=tax_year,
        taxpayer=TaxpayerSection(
            name=filer_name,
            ssn=profile.ssn or '',
            ein=profile.ein or '',
            address=profile.address,
            filing_status=filing_status,
            filing_status_defaulted=profile.filing_status is None,
        ),
        income=income,
        deductions=DeductionSection(
            standard_deduction=standard_deduction,
            taxable_income=taxable_income,
        ),
        tax=TaxSection(
            base_tax=income_tax,
            marginal_rate=calculator.calculate_marginal_rate(taxable_income),
            effective_rate=calculator.calculate_effective_rate(income_tax, income.total_income),
        ),
        credits=CreditSection(tax_before_credits=income_tax),
        other_taxes=OtherTaxSection(),
        payments=PaymentSection(federal_income_tax_withheld=totals.federal_withheld),
        summary=ReturnSummary(
            total_income=agi,
            total_deductions=standard_deduction,
            taxable_income=taxable_income,
            total_tax=income_tax,
            total_withheld=totals.federal_withheld,
            refund_or_owed=refund_or_owed,
        ),
        dependents=list(profile.dependents),
        w2_information=[_w2_summary(d) for d in w2_documents],
    )
