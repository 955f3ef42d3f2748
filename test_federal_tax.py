"""Test federal Form 1040 computation."""

import logging
import sys
import unittest

sys.path.insert(0, '.')

import pytest

from taxfiler.errors import NoDocumentsError, NoProfileError
from taxfiler.federal_tax import (
    TAX_TABLES_2024, Bracket, FederalTaxCalculator, TaxTables, aggregate_w2s,
    compute_return, round_half_up,
)
from taxfiler.models import (
    Dependent, DocumentType, ExtractedDocument, FilingStatus, TaxProfile, W2Fields,
)


def w2(wages=None, withheld=None, employer="Acme Corp", **extra) -> ExtractedDocument:
    return ExtractedDocument(
        doc_type=DocumentType.W2,
        filename="w2.pdf",
        fields=W2Fields(employer_name=employer, wages=wages, federal_tax_withheld=withheld, **extra),
    )


def profile(status=FilingStatus.SINGLE, **kwargs) -> TaxProfile:
    return TaxProfile(filing_status=status, ssn="123-45-6789", **kwargs)


def test_first_bracket_boundary():
    calc = FederalTaxCalculator(FilingStatus.SINGLE)

    tax, breakdown = calc.calculate_progressive_tax(11_000)
    assert tax == pytest.approx(1_100.00)
    assert len(breakdown) == 1

    tax, breakdown = calc.calculate_progressive_tax(11_001)
    assert tax == pytest.approx(1_100.12)
    assert [b['rate'] for b in breakdown] == [0.10, 0.12]
    assert calc.compute_tax(11_001) == 1_100


def test_rounding_half_up():
    assert round_half_up(1100.5) == 1101
    assert round_half_up(1100.49) == 1100
    assert round_half_up(0.5) == 1
    assert round_half_up(0) == 0


def test_top_bracket():
    calc = FederalTaxCalculator(FilingStatus.SINGLE)
    tax, breakdown = calc.calculate_progressive_tax(1_000_000)

    expected = (
        11_000 * 0.10 + 33_725 * 0.12 + 50_650 * 0.22 + 86_675 * 0.24 +
        49_200 * 0.32 + 346_875 * 0.35 + 421_875 * 0.37
    )
    assert tax == pytest.approx(expected)
    assert breakdown[-1]['bracket'] == "$578,125+"
    assert calc.calculate_marginal_rate(1_000_000) == 0.37


def test_tax_is_monotonic():
    calc = FederalTaxCalculator(FilingStatus.MARRIED_FILING_JOINTLY)
    previous = -1.0
    for income in range(0, 800_000, 7_919):
        tax, _ = calc.calculate_progressive_tax(income)
        assert tax >= previous
        previous = tax


def test_zero_wages_every_status():
    for status in FilingStatus:
        result = compute_return(profile(status), [w2(wages=0, withheld=0)], "Pat Doe", 2024)
        assert result.summary.taxable_income == 0
        assert result.summary.total_tax == 0
        assert result.summary.refund_or_owed == 0
        assert not result.summary.is_refund


def test_no_documents_every_status():
    for status in FilingStatus:
        with pytest.raises(NoDocumentsError):
            compute_return(profile(status), [], "Pat Doe", 2024)


def test_no_documents_checked_before_profile():
    with pytest.raises(NoDocumentsError):
        compute_return(None, [], "Pat Doe", 2024)
    with pytest.raises(NoProfileError):
        compute_return(None, [w2(wages=1_000)], "Pat Doe", 2024)


def test_refund():
    # taxable 35,400: 1,100 + 24,400 * 12% = 4,028
    result = compute_return(profile(), [w2(wages=50_000, withheld=6_000)], "Pat Doe", 2024)

    assert result.deductions.standard_deduction == 14_600
    assert result.deductions.taxable_income == 35_400
    assert result.tax.base_tax == 4_028
    assert result.summary.refund_or_owed == 1_972
    assert result.summary.is_refund
    assert result.to_dict()["refundOrOwed"]["refundAmount"] == 1_972
    assert result.to_dict()["refundOrOwed"]["amountOwed"] == 0


def test_amount_owed():
    result = compute_return(profile(), [w2(wages=50_000, withheld=1_000)], "Pat Doe", 2024)

    assert result.summary.refund_or_owed == -3_028
    assert not result.summary.is_refund
    assert result.summary.amount_owed == 3_028


def test_multiple_w2s_are_summed():
    docs = [
        w2(wages=30_000, withheld=3_000, employer="Acme Corp"),
        w2(wages=20_000, withheld=2_000, employer="Globex"),
    ]
    result = compute_return(profile(), docs, "Pat Doe", 2024)

    assert result.income.wages == 50_000
    assert result.payments.federal_income_tax_withheld == 5_000
    assert [w.employer for w in result.w2_information] == ["Acme Corp", "Globex"]


def test_missing_fields_count_as_zero():
    docs = [
        w2(wages=40_000, withheld=None),
        ExtractedDocument(
            doc_type=DocumentType.W2,
            filename="bad.pdf",
            fields=W2Fields.from_field_map({"wages": "n/a", "federalTaxWithheld": "1,500.00"}),
        ),
    ]
    totals = aggregate_w2s(docs)

    assert totals.wages == 40_000
    assert totals.federal_withheld == 1_500


def test_married_joint_schedule():
    # taxable 70,800: 2,200 + 48,800 * 12% = 8,056
    result = compute_return(
        profile(FilingStatus.MARRIED_FILING_JOINTLY),
        [w2(wages=100_000, withheld=9_000)],
        "Pat Doe", 2024,
    )

    assert result.deductions.standard_deduction == 29_200
    assert result.tax.base_tax == 8_056


def test_head_of_household_uses_single_brackets():
    # Deduction is status-specific but brackets fall back to single:
    # taxable 28,100: 1,100 + 17,100 * 12% = 3,152
    result = compute_return(
        profile(FilingStatus.HEAD_OF_HOUSEHOLD),
        [w2(wages=50_000, withheld=0)],
        "Pat Doe", 2024,
    )

    assert result.deductions.standard_deduction == 21_900
    assert result.tax.base_tax == 3_152


def test_missing_filing_status_defaults_to_single():
    result = compute_return(TaxProfile(), [w2(wages=50_000)], "Pat Doe", 2024)

    assert result.taxpayer.filing_status == FilingStatus.SINGLE
    assert result.taxpayer.filing_status_defaulted
    assert result.to_dict()["taxpayer"]["filingStatusDefaulted"] is True


def test_tax_year_mismatch_warns(caplog):
    with caplog.at_level(logging.WARNING, logger="taxfiler.federal_tax"):
        result = compute_return(profile(), [w2(wages=20_000)], "Pat Doe", 2025)

    assert result.tax_year == 2025
    assert "2024 tables" in caplog.text


def test_non_w2_documents_are_ignored():
    class FakeType:
        value = "1099"

    other = w2(wages=99_999)
    other.doc_type = FakeType()
    with pytest.raises(NoDocumentsError):
        compute_return(profile(), [other], "Pat Doe", 2024)


class TestReturnStructure(unittest.TestCase):
    def setUp(self):
        self.result = compute_return(
            profile(dependents=[Dependent(name="Sam Doe", relationship="child")]),
            [w2(wages=52_340, withheld=6_100, employer_ein="12-3456789")],
            "Pat Doe", 2024,
        )
        self.data = self.result.to_dict()

    def test_top_level_sections(self):
        for key in ("taxYear", "formType", "taxpayer", "income", "deductions", "tax",
                    "credits", "otherTaxes", "payments", "refundOrOwed", "dependents",
                    "w2Information", "summary"):
            self.assertIn(key, self.data)
        self.assertEqual(self.data["formType"], "1040")

    def test_unsupported_lines_are_zero(self):
        self.assertEqual(self.data["credits"]["totalCredits"], 0)
        self.assertEqual(self.data["otherTaxes"]["totalOtherTaxes"], 0)
        self.assertEqual(self.data["income"]["taxableInterest"], 0)
        self.assertEqual(self.data["refundOrOwed"]["penalty"], 0)

    def test_summary_matches_sections(self):
        summary = self.data["summary"]
        self.assertEqual(summary["totalIncome"], self.data["income"]["adjustedGrossIncome"])
        self.assertEqual(summary["taxableIncome"], self.data["deductions"]["taxableIncome"])
        self.assertEqual(summary["totalTax"], self.data["tax"]["totalTax"])
        self.assertEqual(summary["refundOrOwed"], summary["totalWithheld"] - summary["totalTax"])

    def test_dependents_and_w2_echo(self):
        self.assertEqual(self.data["dependents"][0]["name"], "Sam Doe")
        self.assertEqual(self.data["w2Information"][0]["ein"], "12-3456789")


def test_custom_tables():
    tables = TaxTables(
        tax_year=2030,
        standard_deductions={FilingStatus.SINGLE: 1_000},
        brackets={FilingStatus.SINGLE: [Bracket(0, float('inf'), 0.5)]},
    )
    result = compute_return(profile(), [w2(wages=3_000)], "Pat Doe", 2030, tables)

    assert result.deductions.taxable_income == 2_000
    assert result.tax.base_tax == 1_000


def test_default_tables_values():
    assert TAX_TABLES_2024.standard_deduction(FilingStatus.MARRIED_FILING_SEPARATELY) == 14_600
    assert TAX_TABLES_2024.standard_deduction(FilingStatus.QUALIFYING_WIDOW) == 29_200
    assert TAX_TABLES_2024.brackets_for(FilingStatus.QUALIFYING_WIDOW) == \
        TAX_TABLES_2024.brackets_for(FilingStatus.SINGLE)
