"""Tests for W-2 field extraction."""

import sys

sys.path.insert(0, '.')

import pytest

from taxfiler.data_extractor import ExtractionStatus, TaxDataExtractor, extract
from taxfiler.document_parser import DocumentParser
from taxfiler.models import SourceFormat


SAMPLE_W2 = """\
Form W-2 Wage and Tax Statement 2024
Employer's name: Acme Corp
Employer identification number (EIN): 12-3456789
Employee's social security number: 123-45-6789
1 Wages, tips, other compensation: $52,340.00
2 Federal income tax withheld: $6,100.00
3 Social security wages: 52,340.00
5 Medicare wages and tips: 52,340.00
State: CA
"""


def test_labeled_w2():
    """Labels on the same line as their amounts."""
    result = extract(SAMPLE_W2)

    assert result.status == ExtractionStatus.LABELED
    assert result.success
    assert not result.low_confidence
    fields = result.fields
    assert fields.employer_name == "Acme Corp"
    assert fields.employer_ein == "12-3456789"
    assert fields.employee_ssn == "123-45-6789"
    assert fields.wages == 52_340.00
    assert fields.federal_tax_withheld == 6_100.00
    assert fields.social_security_wages == 52_340.00
    assert fields.medicare_wages == 52_340.00
    assert fields.state == "CA"
    assert result.confidence == pytest.approx(1.0)
    assert result.warnings == []


def test_box_number_labels():
    result = extract("Box 1: $52,340.00\nBox 2: $6,100.00")

    assert result.status == ExtractionStatus.LABELED
    assert result.fields.wages == 52_340.00
    assert result.fields.federal_tax_withheld == 6_100.00


def test_amount_on_next_line():
    text = "Wages, tips, other compensation\n$48,000.00\nFederal income tax withheld\n5,200.00\n"
    result = extract(text)

    assert result.fields.wages == 48_000.00
    assert result.fields.federal_tax_withheld == 5_200.00


def test_field_map_omits_absent_fields():
    data = extract("Box 1: $1,000.00").field_map()

    assert data == {"wages": 1000.0}


def test_missing_wages_warns():
    result = extract("Federal income tax withheld: 900.00")

    assert result.status == ExtractionStatus.LABELED
    assert result.fields.wages is None
    assert any("wages" in w.lower() for w in result.warnings)


def test_positional_fallback_is_low_confidence():
    """Unlabeled amounts go to Boxes 1-3 in order and are flagged."""
    result = extract("$10,000 $1,200 $9,500")

    assert result.status == ExtractionStatus.FALLBACK
    assert result.low_confidence
    assert result.fields.wages == 10_000
    assert result.fields.federal_tax_withheld == 1_200
    assert result.fields.social_security_wages == 9_500
    assert result.fields.employee_ssn is None
    assert result.confidence == TaxDataExtractor.FALLBACK_CONFIDENCE


def test_fallback_with_fewer_amounts():
    result = extract("total $750.25")

    assert result.status == ExtractionStatus.FALLBACK
    assert result.fields.wages == 750.25
    assert result.fields.federal_tax_withheld is None


def test_no_amounts_is_empty():
    result = extract("This page intentionally left blank")

    assert result.status == ExtractionStatus.EMPTY
    assert not result.success
    assert not result.low_confidence
    assert result.fields.is_empty()
    assert result.field_map() == {}


def test_empty_text():
    assert extract("").status == ExtractionStatus.EMPTY
    assert extract(None).status == ExtractionStatus.EMPTY


def test_source_format_does_not_change_patterns():
    doc = extract(SAMPLE_W2, SourceFormat.DOCUMENT)
    img = extract(SAMPLE_W2, SourceFormat.IMAGE)

    assert img.source_format == SourceFormat.IMAGE
    assert doc.fields == img.fields


def test_side_by_side_boxes():
    """Box labels printed in one row with their amounts in the row below."""
    text = (
        "1 Wages, tips, other compensation 2 Federal income tax withheld\n"
        "52340.00 6000.00\n"
        "3 Social security wages 4 Social security tax withheld\n"
        "$52,340.00 $3,245.08\n"
    )
    result = extract(text)

    assert result.status == ExtractionStatus.LABELED
    assert result.fields.wages == 52_340.00
    assert result.fields.federal_tax_withheld == 6_000.00
    assert result.fields.social_security_wages == 52_340.00
    assert result.fields.social_security_tax == 3_245.08
    assert result.confidence == pytest.approx(TaxDataExtractor.GRID_CONFIDENCE)


def test_next_box_number_is_not_an_amount():
    result = extract("1 Wages, tips, other compensation 2 Federal income tax withheld")

    assert result.fields.wages is None
    assert result.fields.federal_tax_withheld is None


def test_box12_code_d_retirement():
    result = extract("Box 1: 80,000.00\nBox 12a Code D 6,500.00")

    assert result.fields.retirement_401k == 6_500.00
    assert result.fields.wages == 80_000.00


def test_state_boxes():
    result = extract("State: NY\nBox 16 State wages: 70,000.00\nBox 17 State income tax: 3,100.00")

    assert result.fields.state == "NY"
    assert result.fields.state_wages == 70_000.00
    assert result.fields.state_tax == 3_100.00


class FailingParser(DocumentParser):
    def parse(self, file_path):
        raise RuntimeError("tesseract is not installed")


def test_recognizer_failure_degrades():
    """A parser error never escapes extract_file."""
    result = TaxDataExtractor(parser=FailingParser()).extract_file("scan.png")

    assert result.status == ExtractionStatus.FAILED
    assert result.low_confidence
    assert result.source_format == SourceFormat.IMAGE
    data = result.field_map()
    assert data["wages"] == 0
    assert data["federalTaxWithheld"] == 0
    assert data["socialSecurityWages"] == 0
    assert data["medicareWages"] == 0
    assert data["error"] == "Failed to extract data from document"
    assert "tesseract" in data["message"]


def test_unsupported_file_degrades(tmp_path):
    path = tmp_path / "w2.docx"
    path.write_text("not really a document")

    result = TaxDataExtractor().extract_file(str(path))

    assert result.status == ExtractionStatus.FAILED
    assert result.source_file == str(path)


def test_extract_pairs():
    result = TaxDataExtractor().extract_pairs({
        "employer name": "Globex",
        "box 1 wages": "61,250.00",
        "box 2 federal income tax withheld": "7,020.00",
    })

    assert result.status == ExtractionStatus.LABELED
    assert result.fields.employer_name == "Globex"
    assert result.fields.wages == 61_250.00
    assert result.fields.federal_tax_withheld == 7_020.00


def test_csv_spreadsheet(tmp_path):
    path = tmp_path / "payroll.csv"
    path.write_text(
        'Employer name,Initech\n'
        'Box 1 wages,"45,000.00"\n'
        'Box 2 federal income tax withheld,"4,400.00"\n'
    )

    result = TaxDataExtractor().extract_file(str(path))

    assert result.status == ExtractionStatus.LABELED
    assert result.source_format == SourceFormat.DOCUMENT
    assert result.fields.employer_name == "Initech"
    assert result.fields.wages == 45_000.00
    assert result.fields.federal_tax_withheld == 4_400.00
