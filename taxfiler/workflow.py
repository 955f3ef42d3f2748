"""Guided filing workflow: tax info -> W-2 upload -> review -> payment -> submit.

The service is stateless; every call reads what it needs from the store.
"""

import logging
import math
import secrets
import string
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .config_loader import AppSettings
from .data_extractor import ExtractionResult, TaxDataExtractor
from .errors import (
    InvalidPaymentError, InvalidTaxInfoError, NoDocumentsError, NoProfileError,
    NoReturnError, NotFoundError, PaymentRequiredError, ReturnAlreadySubmittedError,
)
from .federal_tax import TaxTables, compute_return
from .models import (
    Address, Dependent, DocumentType, ExtractedDocument, FilingStatus, Payment,
    PaymentStatus, ReturnStatus, TaxProfile, TaxReturnRecord, TaxReturnResult, User,
)
from .storage import FilingStore

logger = logging.getLogger(__name__)

MIN_PAYMENT = 0.50


class FilingStep(Enum):
    TAX_INFO = "tax_info"
    UPLOAD = "upload"
    REVIEW = "review"
    PAYMENT = "payment"
    SUBMIT = "submit"
    COMPLETE = "complete"


@dataclass(frozen=True)
class FilingProgress:
    """Snapshot of where a user is in the workflow."""
    has_tax_info: bool
    w2_count: int
    has_return: bool
    has_completed_payment: bool
    return_status: ReturnStatus

    @property
    def step(self) -> FilingStep:
        if self.return_status == ReturnStatus.SUBMITTED:
            return FilingStep.COMPLETE
        if not self.has_tax_info:
            return FilingStep.TAX_INFO
        if self.w2_count == 0:
            return FilingStep.UPLOAD
        if not self.has_return:
            return FilingStep.REVIEW
        if not self.has_completed_payment:
            return FilingStep.PAYMENT
        return FilingStep.SUBMIT

    def to_dict(self) -> dict:
        return {
            "step": self.step.value,
            "hasTaxInfo": self.has_tax_info,
            "w2Count": self.w2_count,
            "hasReturn": self.has_return,
            "hasCompletedPayment": self.has_completed_payment,
            "returnStatus": self.return_status.value,
        }


def generate_submission_id() -> str:
    """'TX' + base36 epoch millis + 5 random characters."""
    alphabet = string.digits + string.ascii_uppercase
    millis = int(time.time() * 1000)
    encoded = ""
    while millis:
        millis, rem = divmod(millis, 36)
        encoded = alphabet[rem] + encoded
    return "TX" + encoded + "".join(secrets.choice(alphabet) for _ in range(5))


def parse_tax_info(data: dict) -> TaxProfile:
    """
    Validate a tax info payload and build a TaxProfile.

    Raises:
        InvalidTaxInfoError: unknown filing status, no SSN/EIN, or a
            dependent without a name
    """
    filing_status = FilingStatus.parse(data.get("filingStatus"))
    if filing_status is None:
        allowed = ", ".join(s.value for s in FilingStatus)
        raise InvalidTaxInfoError(f"Invalid filing status. Choose one of: {allowed}")

    ssn = (data.get("ssn") or "").strip()
    ein = (data.get("ein") or "").strip()
    if not ssn and not ein:
        raise InvalidTaxInfoError("An SSN or EIN is required.")

    dependents = []
    for raw in data.get("dependents") or []:
        if not isinstance(raw, dict) or not (raw.get("name") or "").strip():
            raise InvalidTaxInfoError("Every dependent needs a name.")
        dependents.append(Dependent.from_dict(raw))

    return TaxProfile(
        filing_status=filing_status,
        tax_classification=data.get("taxClassification") or "individual",
        ssn=ssn,
        ein=ein,
        address=Address.from_dict(data.get("address")),
        dependents=dependents,
    )


class PaymentVerifier:
    """
    Looks up a payment intent with the card-payment provider.

    Override ``intent_status`` to call a real provider. With no provider
    behind it every confirmation is recorded as pending.
    """

    def intent_status(self, provider_reference: str) -> Optional[str]:
        return None

    def verify(self, provider_reference: str) -> PaymentStatus:
        status = PaymentStatus.from_provider(self.intent_status(provider_reference))
        logger.debug("Payment %s verified as %s", provider_reference, status.value)
        return status


class FilingWorkflow:
    """Operations behind the filing API."""

    def __init__(self, store: FilingStore, extractor: Optional[TaxDataExtractor] = None,
                 tables: Optional[TaxTables] = None, settings: Optional[AppSettings] = None,
                 payment_verifier: Optional[PaymentVerifier] = None):
        self.store = store
        self.extractor = extractor or TaxDataExtractor()
        self.payment_verifier = payment_verifier or PaymentVerifier()
        self.settings = settings or AppSettings()
        self.tables = tables or self.settings.load_tables()
        self.tax_year = self.settings.tax_year or self.tables.tax_year

    def _user(self, user_id: int) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def register_user(self, email: str, first_name: str, last_name: str,
                      phone: Optional[str] = None) -> User:
        if not email or "@" not in email:
            raise InvalidTaxInfoError("A valid email address is required.")
        user = self.store.create_user(email, first_name, last_name, phone)
        logger.info("Registered user %s", user.id)
        return user

    # ---- Step 1: tax info ----

    def update_tax_info(self, user_id: int, data: dict) -> TaxProfile:
        self._user(user_id)
        profile = parse_tax_info(data)
        self.store.save_tax_profile(user_id, profile)
        return profile

    def get_tax_info(self, user_id: int) -> Optional[TaxProfile]:
        self._user(user_id)
        return self.store.get_tax_profile(user_id)

    # ---- Step 2: documents ----

    def upload_document(self, user_id: int, file_path: str, filename: str,
                        doc_type: DocumentType = DocumentType.W2) -> Tuple[ExtractedDocument, ExtractionResult]:
        """Extract a stored upload and persist its field map."""
        self._user(user_id)
        result = self.extractor.extract_file(file_path)
        if result.low_confidence:
            logger.warning("Low-confidence extraction (%s) for %s", result.status.value, filename)
        document = self.store.add_document(user_id, ExtractedDocument(
            doc_type=doc_type,
            filename=filename,
            fields=result.fields,
            extraction_status=result.status.value,
            error=result.error,
        ))
        logger.info("Stored %s document %s for user %s", doc_type.value, document.id, user_id)
        return document, result

    def list_documents(self, user_id: int, doc_type: Optional[DocumentType] = None) -> List[ExtractedDocument]:
        self._user(user_id)
        return self.store.list_documents(user_id, doc_type)

    def delete_document(self, user_id: int, document_id: int) -> None:
        self._user(user_id)
        if not self.store.delete_document(user_id, document_id):
            raise NotFoundError("Document not found")

    # ---- Step 3: Form 1040 ----

    def generate_return(self, user_id: int) -> TaxReturnResult:
        """Compute and store the return; re-running overwrites and lands in review."""
        user = self._user(user_id)
        if self.store.get_tax_return(user_id).status == ReturnStatus.SUBMITTED:
            raise ReturnAlreadySubmittedError()

        w2_documents = self.store.list_documents(user_id, DocumentType.W2)
        if not w2_documents:
            raise NoDocumentsError()
        profile = self.store.get_tax_profile(user_id)
        if profile is None:
            raise NoProfileError()

        result = compute_return(profile, w2_documents, user.display_name, self.tax_year, self.tables)
        if self.store.save_tax_return(user_id, result.to_dict()) is None:
            # submitted while we were computing
            raise ReturnAlreadySubmittedError()
        logger.info("Generated Form 1040 for user %s (refund=%s)", user_id, result.summary.is_refund)
        return result

    def get_return(self, user_id: int) -> TaxReturnRecord:
        self._user(user_id)
        return self.store.get_tax_return(user_id)

    # ---- Step 4: payment ----

    def record_payment(self, user_id: int, amount: float, provider_reference: str) -> Payment:
        """
        Record a payment confirmation.

        The status comes from the payment verifier, never from the caller,
        so only a payment the provider reports as succeeded unlocks submit.
        """
        self._user(user_id)
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            raise InvalidPaymentError("Invalid amount")
        if not math.isfinite(amount) or amount < MIN_PAYMENT:
            raise InvalidPaymentError("Invalid amount")
        if not provider_reference:
            raise InvalidPaymentError("Payment intent ID is required")
        payment_status = self.payment_verifier.verify(provider_reference)

        payment = self.store.add_payment(user_id, Payment(
            amount=amount,
            provider_reference=provider_reference,
            status=payment_status,
        ))
        logger.info("Recorded %s payment %s for user %s", payment_status.value, payment.id, user_id)
        return payment

    def payment_history(self, user_id: int) -> List[Payment]:
        self._user(user_id)
        return self.store.list_payments(user_id)

    def payment_summary(self, user_id: int) -> dict:
        payments = self.payment_history(user_id)
        return {
            "totalPayments": len(payments),
            "totalAmount": sum(p.amount for p in payments),
            "completedPayments": sum(1 for p in payments if p.status == PaymentStatus.COMPLETED),
            "pendingPayments": sum(1 for p in payments if p.status == PaymentStatus.PENDING),
            "lastPayment": payments[0].to_dict() if payments else None,
        }

    # ---- Step 5: submit ----

    def submit_return(self, user_id: int) -> str:
        """
        Submit the reviewed return.

        Returns:
            Submission id

        Raises:
            NoReturnError: no computed return exists
            ReturnAlreadySubmittedError: the return is already submitted
            PaymentRequiredError: no completed payment is on record
        """
        self._user(user_id)
        record = self.store.get_tax_return(user_id)
        if record.status == ReturnStatus.SUBMITTED:
            raise ReturnAlreadySubmittedError()
        if not record.form_1040:
            raise NoReturnError()
        if not any(p.is_completed for p in self.store.list_payments(user_id)):
            raise PaymentRequiredError()

        if not self.store.mark_submitted(user_id):
            raise ReturnAlreadySubmittedError()
        submission_id = generate_submission_id()
        logger.info("User %s submitted return %s", user_id, submission_id)
        return submission_id

    def progress(self, user_id: int) -> FilingProgress:
        self._user(user_id)
        record = self.store.get_tax_return(user_id)
        return FilingProgress(
            has_tax_info=self.store.get_tax_profile(user_id) is not None,
            w2_count=len(self.store.list_documents(user_id, DocumentType.W2)),
            has_return=bool(record.form_1040),
            has_completed_payment=any(p.is_completed for p in self.store.list_payments(user_id)),
            return_status=record.status,
        )
