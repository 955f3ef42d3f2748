"""Recognition step: turn an uploaded file into plain text.

PDFs are read with pdfplumber (OCR via Tesseract when the text layer is
empty or unusable), images go straight to Tesseract, and two-column
key/value spreadsheets are loaded with pandas.
"""

import logging
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import pandas as pd
import pdfplumber
import pytesseract
from PIL import Image

from .models import SourceFormat

logger = logging.getLogger(__name__)

# Missing FontBBox warnings are emitted for most scanned W-2 PDFs
for _name in ("pdfminer", "pdfplumber"):
    logging.getLogger(_name).setLevel(logging.ERROR)


@dataclass
class ParsedDocument:
    """Recognized content of one file."""
    file_path: str
    file_type: str  # 'pdf', 'image' or 'spreadsheet'
    text_content: str
    pairs: Dict[str, str] = field(default_factory=dict)  # spreadsheet label -> value

    @property
    def source_format(self) -> SourceFormat:
        if self.file_type == 'image':
            return SourceFormat.IMAGE
        return SourceFormat.DOCUMENT


class DocumentParser:
    """Parse PDFs, images and key/value spreadsheets."""

    PDF_EXTENSIONS = {'.pdf'}
    IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png'}
    SPREADSHEET_EXTENSIONS = {'.csv', '.xlsx'}

    # Below this many characters per page the text layer is treated as missing
    MIN_CHARS_PER_PAGE = 50

    _TESSERACT_PATHS = [
        r'C:\Program Files\Tesseract-OCR\tesseract.exe',
        r'C:\Program Files (x86)\Tesseract-OCR\tesseract.exe',
    ]

    def __init__(self, tesseract_path: Optional[str] = None):
        if tesseract_path:
            pytesseract.pytesseract.tesseract_cmd = tesseract_path
        else:
            for candidate in self._TESSERACT_PATHS:
                if os.path.isfile(candidate):
                    pytesseract.pytesseract.tesseract_cmd = candidate
                    break

    @classmethod
    def supported_extensions(cls) -> set:
        return cls.PDF_EXTENSIONS | cls.IMAGE_EXTENSIONS | cls.SPREADSHEET_EXTENSIONS

    def parse(self, file_path: str) -> ParsedDocument:
        """
        Recognize a document and return its text.

        Args:
            file_path: Path to the uploaded file

        Returns:
            ParsedDocument with the recognized text

        Raises:
            ValueError: if the file extension is not supported
        """
        extension = Path(file_path).suffix.lower()

        if extension in self.PDF_EXTENSIONS:
            return self._parse_pdf(file_path)
        elif extension in self.IMAGE_EXTENSIONS:
            return self._parse_image(file_path)
        elif extension in self.SPREADSHEET_EXTENSIONS:
            return self._parse_spreadsheet(file_path)
        raise ValueError(f"Unsupported file type: {extension or file_path}")

    def _parse_pdf(self, file_path: str) -> ParsedDocument:
        """Use the PDF text layer, falling back to OCR for scanned pages."""
        text, num_pages = self._pdf_text_layer(file_path)
        if len(text.strip()) < self.MIN_CHARS_PER_PAGE * max(num_pages, 1) or self._is_garbled(text):
            logger.info("PDF text layer unusable for %s, running OCR", file_path)
            ocr_text = self._ocr_pdf(file_path)
            if ocr_text.strip():
                text = ocr_text
        logger.debug("PDF text extracted from %s, length %d", file_path, len(text))
        return ParsedDocument(file_path=file_path, file_type='pdf', text_content=text)

    def _pdf_text_layer(self, file_path: str):
        """Rebuild reading order by sorting characters into rows, then columns.

        Characters are grouped into rows by their top coordinate rounded to
        5pt; a gap wider than 30% of the font size starts a new word.
        """
        page_texts = []
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore")
            with pdfplumber.open(file_path) as pdf:
                num_pages = len(pdf.pages)
                for page in pdf.pages:
                    rows: dict = {}
                    for ch in page.chars:
                        rows.setdefault(round(ch['top'] / 5) * 5, []).append(ch)
                    lines = []
                    for top in sorted(rows):
                        parts = []
                        prev = None
                        for ch in sorted(rows[top], key=lambda c: c['x0']):
                            if prev is not None:
                                size = ((ch.get('size') or 10) + (prev.get('size') or 10)) / 2
                                if ch['x0'] - prev['x1'] > size * 0.3:
                                    parts.append(' ')
                            parts.append(ch['text'])
                            prev = ch
                        lines.append(''.join(parts))
                    page_texts.append('\n'.join(lines))
        return '\n\n'.join(page_texts), num_pages

    @staticmethod
    def _is_garbled(text: str) -> bool:
        """More than 40% of non-empty lines being 1-2 characters means column soup."""
        lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
        if not lines:
            return False
        short = sum(1 for ln in lines if len(ln) <= 2)
        return short / len(lines) > 0.40

    def _ocr_pdf(self, file_path: str) -> str:
        parts = []
        with pdfplumber.open(file_path) as pdf:
            for page in pdf.pages:
                image = page.to_image(resolution=300).original
                parts.append(pytesseract.image_to_string(image))
        return '\n\n'.join(p for p in parts if p)

    def _parse_image(self, file_path: str) -> ParsedDocument:
        with Image.open(file_path) as image:
            if image.mode != 'RGB':
                image = image.convert('RGB')
            text = pytesseract.image_to_string(image, lang='eng')
        text = OCREnhancer.correct_text(text)
        logger.debug("OCR text extracted from %s, length %d", file_path, len(text))
        return ParsedDocument(file_path=file_path, file_type='image', text_content=text)

    def _parse_spreadsheet(self, file_path: str) -> ParsedDocument:
        """Load a two-column label/value sheet (e.g. a payroll export)."""
        if Path(file_path).suffix.lower() == '.csv':
            df = pd.read_csv(file_path, header=None, dtype=str)
        else:
            df = pd.read_excel(file_path, header=None, dtype=str)

        pairs = {}
        if len(df.columns) >= 2:
            for _, row in df.iterrows():
                label, value = row.iloc[0], row.iloc[1]
                if pd.isna(label) or pd.isna(value):
                    continue
                pairs[str(label).strip().lower()] = str(value).strip()

        return ParsedDocument(
            file_path=file_path,
            file_type='spreadsheet',
            text_content=df.to_string(index=False, header=False),
            pairs=pairs,
        )


class OCREnhancer:
    """Fix characters Tesseract commonly misreads on wage statements."""

    COMMON_CORRECTIONS = {
        'W-Z': 'W-2',
        'S0CIAL': 'SOCIAL',
        'SECUR1TY': 'SECURITY',
        'Securlty': 'Security',
        'Medlcare': 'Medicare',
        'Wagos': 'Wages',
    }

    @classmethod
    def correct_text(cls, text: str) -> str:
        for wrong, right in cls.COMMON_CORRECTIONS.items():
            text = text.replace(wrong, right)
        return text
