"""Extract W-2 fields from recognized document text."""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .document_parser import DocumentParser, ParsedDocument
from .models import SourceFormat, W2Fields, W2_FIELD_KEYS, W2_MONEY_FIELDS

logger = logging.getLogger(__name__)

_AMOUNT = r"(\d[\d,]*(?:\.\d+)?)"

# A short number followed by words is the next box's number ("2 Federal ..."),
# not an amount.
_NOT_BOX_NUMBER = r"(?!\d{1,2}[a-z]?[ \t]+[a-z])"

# Two or more amounts and nothing else: the value row under a row of box labels.
_AMOUNT_ROW = re.compile(
    r"^[ \t]*\$?[ \t]*\d[\d,]*(?:\.\d+)?(?:[ \t]+\$?[ \t]*\d[\d,]*(?:\.\d+)?)+[ \t]*$"
)


def _same_line(label: str) -> str:
    """Label followed by an amount on the same line (``Box 1: $52,340.00``)."""
    return label + r"[^\d\n]{0,40}?" + _NOT_BOX_NUMBER + _AMOUNT


def _next_line(label: str) -> str:
    """Label alone on its line with the amount starting the next line."""
    return label + r"[^\d\n]*\n\s*\$?\s*" + _AMOUNT


def _money(*labels: str) -> List[str]:
    return [_same_line(label) for label in labels] + [_next_line(label) for label in labels]


MONEY_LABELS = {
    'wages': [
        r"wages,?\s*tips,?\s*(?:and\s+)?other\s+comp(?:ensation|\.)?",
        r"\bbox\s*1\b",
        r"^\s*1\.?\s+wages\b",
        r"^\s*wages\b",
    ],
    'federal_tax_withheld': [
        r"federal\s+income\s+tax\s+withheld",
        r"\bbox\s*2\b",
        r"^\s*2\.?\s+federal\b",
        r"^\s*federal\s+(?:income\s+)?tax\b",
    ],
    'social_security_wages': [r"social\s+security\s+wages", r"\bbox\s*3\b"],
    'social_security_tax': [r"social\s+security\s+tax(?:\s+withheld)?", r"\bbox\s*4\b"],
    'medicare_wages': [r"medicare\s+wages(?:\s+and\s+tips)?", r"\bbox\s*5\b"],
    'medicare_tax': [r"medicare\s+tax(?:\s+withheld)?", r"\bbox\s*6\b"],
    'dependent_care': [r"dependent\s+care\s+benefits?", r"\bbox\s*10\b"],
    'nonqualified_plans': [r"non-?qualified\s+plans?", r"\bbox\s*11\b"],
    'retirement_401k': [r"\b401\s*\(?k\)?(?:\s+contributions?)?", r"\bbox\s*12a\b(?:\s*code)?\s*D\b"],
    'state_wages': [r"state\s+wages(?:,?\s*tips,?\s*etc\.?)?", r"\bbox\s*16\b"],
    'state_tax': [r"state\s+income\s+tax", r"\bbox\s*17\b"],
}


class ExtractionStatus(Enum):
    LABELED = "labeled"  # at least one field matched a label pattern
    FALLBACK = "fallback"  # positional guess, no label correlation
    EMPTY = "empty"  # nothing recognizable in the text
    FAILED = "failed"  # recognizer or parser raised; default map returned


@dataclass
class ExtractionResult:
    """Outcome of one extraction attempt. Never carries an exception."""
    fields: W2Fields
    status: ExtractionStatus
    confidence: float = 0.0
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    message: Optional[str] = None
    source_format: SourceFormat = SourceFormat.DOCUMENT
    source_file: str = ""

    @property
    def success(self) -> bool:
        return self.status in (ExtractionStatus.LABELED, ExtractionStatus.FALLBACK)

    @property
    def low_confidence(self) -> bool:
        return self.status in (ExtractionStatus.FALLBACK, ExtractionStatus.FAILED)

    def field_map(self) -> Dict[str, object]:
        """Field map keyed as on the wire; absent fields are omitted."""
        data = self.fields.to_field_map()
        if self.status == ExtractionStatus.FAILED:
            data["error"] = self.error
            data["message"] = self.message
        return data

    @classmethod
    def failed(cls, reason: str, source_format: SourceFormat = SourceFormat.DOCUMENT,
               source_file: str = "") -> "ExtractionResult":
        """Degraded result: the four core amounts zeroed plus an error marker."""
        return cls(
            fields=W2Fields(
                wages=0.0,
                federal_tax_withheld=0.0,
                social_security_wages=0.0,
                medicare_wages=0.0,
            ),
            status=ExtractionStatus.FAILED,
            error="Failed to extract data from document",
            message=reason,
            warnings=[f"Extraction failed: {reason}"],
            source_format=source_format,
            source_file=source_file,
        )


class TaxDataExtractor:
    """Extract W-2 data from recognized text."""

    # Tried in order per field; the first match wins.
    W2_PATTERNS = {
        'employer_name': [
            r"employer'?s?\s+name\s*[:\-]\s*([^\n]{2,60})",
            r"^\s*(?:employer|company)\s*[:\-]\s*([^\n]{2,60})",
            r"employer'?s?\s+name\b[^\n]*\n\s*([^\n]{2,60})",
        ],
        'employer_ein': [
            r"employer\s+identification\s+number[^\d\n]{0,30}?(\d{2}-?\d{7})\b",
            r"\b(?:EIN|FEIN|federal\s+ID)\b[^\d\n]{0,30}?(\d{2}-?\d{7})\b",
        ],
        'employee_ssn': [
            r"employee'?s?\s+social\s+security\s+number[^\d\n]{0,30}?(\d{3}-?\d{2}-?\d{4})\b",
            r"\bSSN\b[^\d\n]{0,30}?(\d{3}-?\d{2}-?\d{4})\b",
        ],
        **{name: _money(*labels) for name, labels in MONEY_LABELS.items()},
        'state': [
            r"\bstate\s*[:\-]\s*(?-i:([A-Z]{2}))\b",
            r"\bbox\s*15\b[^A-Za-z\d\n]{0,10}(?:state\b[^A-Za-z\d\n]{0,10})?(?-i:([A-Z]{2}))\b",
        ],
    }

    # Positional fallback, used only when no labeled field matched
    CURRENCY_PATTERN = r"\$\s?\d[\d,]*(?:\.\d+)?"
    SSN_PATTERN = r"\b\d{3}-?\d{2}-?\d{4}\b"
    EIN_PATTERN = r"\b\d{2}-?\d{7}\b"
    FALLBACK_ORDER = ['wages', 'federal_tax_withheld', 'social_security_wages']
    FALLBACK_CONFIDENCE = 0.25
    GRID_CONFIDENCE = 0.9

    def __init__(self, parser: Optional[DocumentParser] = None):
        self._parser = parser

    @property
    def parser(self) -> DocumentParser:
        if self._parser is None:
            self._parser = DocumentParser()
        return self._parser

    def _extract_value(self, text: str, patterns: List[str]) -> Tuple[Optional[str], float]:
        """
        Return the first pattern match and its confidence.

        Earlier patterns are more specific, so each later one scores 0.1 lower
        (never below 0.5).
        """
        for i, pattern in enumerate(patterns):
            match = re.search(pattern, text, re.IGNORECASE | re.MULTILINE)
            if match:
                return match.group(1), max(1.0 - i * 0.1, 0.5)
        return None, 0.0

    @staticmethod
    def _parse_amount(value: Optional[str]) -> Optional[float]:
        """Strip separators and currency symbols; None if not a number."""
        if not value:
            return None
        clean = value.replace(',', '').replace('$', '').strip()
        try:
            return float(clean)
        except ValueError:
            return None

    def _extract_grid(self, text: str) -> Dict[str, float]:
        """
        Read boxes printed side by side: a line of box labels over a line
        holding only their amounts. Labels and amounts pair up left to
        right, and only when the counts agree.
        """
        values = {}
        lines = text.splitlines()
        for label_line, amount_line in zip(lines, lines[1:]):
            if not _AMOUNT_ROW.match(amount_line):
                continue
            amounts = re.findall(_AMOUNT, amount_line)
            found = []
            for name, labels in MONEY_LABELS.items():
                starts = [m.start() for m in (re.search(label, label_line, re.IGNORECASE) for label in labels) if m]
                if starts:
                    found.append((min(starts), name))
            if len(found) != len(amounts) or len({start for start, _ in found}) != len(found):
                continue
            for (_, name), raw in zip(sorted(found), amounts):
                amount = self._parse_amount(raw)
                if amount is not None:
                    values.setdefault(name, amount)
        if values:
            logger.debug("Read %d W-2 box(es) from side-by-side rows", len(values))
        return values

    def extract(self, text: str, source_format: SourceFormat = SourceFormat.DOCUMENT) -> ExtractionResult:
        """
        Extract W-2 fields from recognized text.

        Args:
            text: Raw text from PDF parsing or OCR
            source_format: How the text was obtained (does not change patterns)

        Returns:
            ExtractionResult; status tells labeled matches from positional guesses
        """
        text = text or ""
        values = {}
        scores = []
        grid = self._extract_grid(text)

        for name, patterns in self.W2_PATTERNS.items():
            if name in grid:
                values[name] = grid[name]
                scores.append(self.GRID_CONFIDENCE)
                continue
            raw, conf = self._extract_value(text, patterns)
            if raw is None:
                continue
            if name in W2_MONEY_FIELDS:
                amount = self._parse_amount(raw)
                if amount is None:
                    continue
                values[name] = amount
            else:
                raw = raw.strip()
                if not raw:
                    continue
                values[name] = raw.upper() if name == 'state' else raw
            scores.append(conf)

        if values:
            warnings = []
            if 'wages' not in values:
                warnings.append("Could not extract wages (Box 1)")
            logger.debug("Labeled W-2 fields: %s", ", ".join(W2_FIELD_KEYS[n] for n in values))
            return ExtractionResult(
                fields=W2Fields(**values),
                status=ExtractionStatus.LABELED,
                confidence=sum(scores) / len(scores),
                warnings=warnings,
                source_format=source_format,
            )

        return self._extract_positional(text, source_format)

    def _extract_positional(self, text: str, source_format: SourceFormat) -> ExtractionResult:
        """
        Assign the first three dollar amounts to Boxes 1-3 by position.

        There is no label correlation here, so an amount can land in the
        wrong box; the result is flagged low-confidence for that reason.
        """
        values = {}
        amounts = re.findall(self.CURRENCY_PATTERN, text)
        for name, raw in zip(self.FALLBACK_ORDER, amounts):
            amount = self._parse_amount(raw)
            if amount is not None:
                values[name] = amount

        ssn = re.search(self.SSN_PATTERN, text)
        if ssn:
            values['employee_ssn'] = ssn.group(0)
        ein = re.search(self.EIN_PATTERN, text)
        if ein:
            values['employer_ein'] = ein.group(0)

        if not values:
            return ExtractionResult(
                fields=W2Fields(),
                status=ExtractionStatus.EMPTY,
                warnings=["No W-2 fields found in document"],
                source_format=source_format,
            )

        logger.info("No labeled W-2 fields; assigned %d amount(s) by position", len(amounts[:3]))
        return ExtractionResult(
            fields=W2Fields(**values),
            status=ExtractionStatus.FALLBACK,
            confidence=self.FALLBACK_CONFIDENCE,
            warnings=["No labeled W-2 fields found; amounts were assigned by position and need review"],
            source_format=source_format,
        )

    def extract_pairs(self, pairs: Dict[str, str],
                      source_format: SourceFormat = SourceFormat.DOCUMENT) -> ExtractionResult:
        """Extract from spreadsheet label/value pairs (e.g. ``box 1 wages`` -> ``52340``)."""
        text = "\n".join(f"{label}: {value}" for label, value in pairs.items())
        return self.extract(text, source_format)

    def extract_document(self, document: ParsedDocument) -> ExtractionResult:
        if document.pairs:
            result = self.extract_pairs(document.pairs, document.source_format)
        else:
            result = self.extract(document.text_content, document.source_format)
        result.source_file = document.file_path
        return result

    def extract_file(self, file_path: str) -> ExtractionResult:
        """
        Recognize a file and extract its W-2 fields.

        Never raises: a recognizer failure (bad file, OCR error) yields a
        FAILED result with the default field map.
        """
        try:
            document = self.parser.parse(file_path)
        except Exception as e:
            logger.warning("Recognition failed for %s: %s", file_path, e, exc_info=True)
            return ExtractionResult.failed(str(e), self._guess_format(file_path), file_path)
        return self.extract_document(document)

    @staticmethod
    def _guess_format(file_path: str) -> SourceFormat:
        if file_path.lower().endswith(tuple(DocumentParser.IMAGE_EXTENSIONS)):
            return SourceFormat.IMAGE
        return SourceFormat.DOCUMENT


def extract(text: str, source_format: SourceFormat = SourceFormat.DOCUMENT) -> ExtractionResult:
    """Extract W-2 fields from text. Pure: no I/O."""
    return TaxDataExtractor().extract(text, source_format)
