"""Data models for the guided filing workflow."""

import math
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union


class FilingStatus(Enum):
    """Tax filing status options."""
    SINGLE = "single"
    MARRIED_FILING_JOINTLY = "married-joint"
    MARRIED_FILING_SEPARATELY = "married-separate"
    HEAD_OF_HOUSEHOLD = "head-of-household"
    QUALIFYING_WIDOW = "qualifying-widow"

    @classmethod
    def parse(cls, value) -> Optional["FilingStatus"]:
        """Return the matching status, or None for missing/unknown values."""
        if isinstance(value, cls):
            return value
        if not value:
            return None
        normalized = str(value).strip().lower().replace("_", "-")
        for status in cls:
            if status.value == normalized:
                return status
        return None


class DocumentType(Enum):
    """Uploaded document types. Only W-2 is extracted."""
    W2 = "w2"


class SourceFormat(Enum):
    """How the upstream recognizer obtained the document text."""
    DOCUMENT = "document"
    IMAGE = "image"


class ReturnStatus(Enum):
    """Lifecycle of a tax return: draft -> review -> submitted."""
    DRAFT = "draft"
    REVIEW = "review"
    SUBMITTED = "submitted"


class PaymentStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

    @classmethod
    def from_provider(cls, intent_status: Optional[str]) -> "PaymentStatus":
        """Map a card-payment intent status; anything unsettled stays pending."""
        if intent_status == "succeeded":
            return cls.COMPLETED
        if intent_status in ("canceled", "requires_payment_method"):
            return cls.FAILED
        return cls.PENDING


@dataclass
class Address:
    """Mailing address from the W-9 style tax info form."""
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""

    def to_dict(self) -> dict:
        return {
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zipCode": self.zip_code,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Address":
        data = data or {}
        return cls(
            street=data.get("street") or "",
            city=data.get("city") or "",
            state=data.get("state") or "",
            zip_code=data.get("zipCode") or data.get("zip_code") or "",
        )


@dataclass
class Dependent:
    """A dependent claimed on the return."""
    name: str
    ssn: str = ""
    relationship: str = ""
    date_of_birth: Optional[str] = None  # YYYY-MM-DD

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "ssn": self.ssn,
            "relationship": self.relationship,
            "dateOfBirth": self.date_of_birth,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Dependent":
        return cls(
            name=data.get("name"),
            ssn=data.get("ssn") or "",
            relationship=data.get("relationship") or "",
            date_of_birth=data.get("dateOfBirth") or data.get("date_of_birth") or None,
        )


@dataclass
class TaxProfile:
    """Taxpayer filing profile (W-9 data). One per user, replaced as a whole."""
    filing_status: Optional[FilingStatus] = None
    tax_classification: str = "individual"
    ssn: str = ""
    ein: str = ""
    address: Address = field(default_factory=Address)
    dependents: List[Dependent] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "filingStatus": self.filing_status.value if self.filing_status else None,
            "taxClassification": self.tax_classification,
            "ssn": self.ssn,
            "ein": self.ein,
            "address": self.address.to_dict(),
            "dependents": [d.to_dict() for d in self.dependents],
        }


# W-2 field name -> field map key. Order matters for display only.
W2_FIELD_KEYS = {
    "employer_name": "employerName",
    "employer_ein": "employerEIN",
    "employee_ssn": "employeeSSN",
    "wages": "wages",  # Box 1
    "federal_tax_withheld": "federalTaxWithheld",  # Box 2
    "social_security_wages": "socialSecurityWages",  # Box 3
    "social_security_tax": "socialSecurityTax",  # Box 4
    "medicare_wages": "medicareWages",  # Box 5
    "medicare_tax": "medicareTax",  # Box 6
    "dependent_care": "dependentCare",  # Box 10
    "nonqualified_plans": "nonqualifiedPlans",  # Box 11
    "retirement_401k": "retirement401k",  # Box 12a, code D
    "state": "state",  # Box 15
    "state_wages": "stateWages",  # Box 16
    "state_tax": "stateTax",  # Box 17
}

W2_TEXT_FIELDS = {"employer_name", "employer_ein", "employee_ssn", "state"}
W2_MONEY_FIELDS = [name for name in W2_FIELD_KEYS if name not in W2_TEXT_FIELDS]


def _to_amount(value) -> Optional[float]:
    """Coerce a stored field map value to float; None when absent, malformed or not finite."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        amount = float(value)
    else:
        try:
            amount = float(str(value).replace(",", "").replace("$", "").strip())
        except ValueError:
            return None
    return amount if math.isfinite(amount) else None


@dataclass
class W2Fields:
    """Typed W-2 field map. None means the field was not found."""
    employer_name: Optional[str] = None
    employer_ein: Optional[str] = None
    employee_ssn: Optional[str] = None
    wages: Optional[float] = None
    federal_tax_withheld: Optional[float] = None
    social_security_wages: Optional[float] = None
    social_security_tax: Optional[float] = None
    medicare_wages: Optional[float] = None
    medicare_tax: Optional[float] = None
    dependent_care: Optional[float] = None
    nonqualified_plans: Optional[float] = None
    retirement_401k: Optional[float] = None
    state: Optional[str] = None
    state_wages: Optional[float] = None
    state_tax: Optional[float] = None

    def present(self) -> List[str]:
        """Names of the fields that were found."""
        return [f.name for f in fields(self) if getattr(self, f.name) is not None]

    def is_empty(self) -> bool:
        return not self.present()

    def amount(self, name: str) -> float:
        """Monetary field value, 0.0 when absent."""
        value = getattr(self, name)
        return value if value is not None else 0.0

    def to_field_map(self) -> Dict[str, Union[float, str]]:
        return {
            key: getattr(self, name)
            for name, key in W2_FIELD_KEYS.items()
            if getattr(self, name) is not None
        }

    @classmethod
    def from_field_map(cls, data: Optional[dict]) -> "W2Fields":
        """Build from a stored field map; malformed numbers become absent."""
        data = data or {}
        values = {}
        for name, key in W2_FIELD_KEYS.items():
            raw = data.get(key)
            if raw is None:
                continue
            if name in W2_TEXT_FIELDS:
                values[name] = str(raw).strip()
            else:
                values[name] = _to_amount(raw)
        return cls(**values)


@dataclass
class ExtractedDocument:
    """An uploaded document and its extracted field map. Immutable once stored."""
    doc_type: DocumentType
    filename: str
    fields: W2Fields
    id: Optional[int] = None
    extraction_status: str = "labeled"
    error: Optional[str] = None
    upload_date: Optional[datetime] = None

    def to_dict(self) -> dict:
        extracted = self.fields.to_field_map()
        if self.error:
            extracted["error"] = self.error
        return {
            "id": self.id,
            "type": self.doc_type.value,
            "filename": self.filename,
            "extractedData": extracted,
            "extractionStatus": self.extraction_status,
            "uploadDate": self.upload_date.isoformat() if self.upload_date else None,
        }


@dataclass
class Payment:
    """A payment ledger entry. Append-only."""
    amount: float
    provider_reference: str
    status: PaymentStatus
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount": self.amount,
            "providerReference": self.provider_reference,
            "status": self.status.value,
            "date": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class User:
    id: int
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "phone": self.phone,
        }


@dataclass
class TaxReturnRecord:
    """Persisted return: one per user."""
    user_id: int
    form_1040: Optional[dict] = None
    status: ReturnStatus = ReturnStatus.DRAFT
    submission_date: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "form1040": self.form_1040,
            "status": self.status.value,
            "submissionDate": self.submission_date.isoformat() if self.submission_date else None,
        }


# --- Form 1040 computation result -------------------------------------------

@dataclass
class TaxpayerSection:
    name: str
    ssn: str
    ein: str
    address: Address
    filing_status: FilingStatus
    filing_status_defaulted: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "ssn": self.ssn,
            "ein": self.ein,
            "address": self.address.to_dict(),
            "filingStatus": self.filing_status.value,
            "filingStatusDefaulted": self.filing_status_defaulted,
        }


@dataclass
class IncomeSection:
    """Form 1040 lines 1-11."""
    wages: float = 0.0
    taxable_interest: float = 0.0
    ordinary_dividends: float = 0.0
    ira_distributions: float = 0.0
    pensions_annuities: float = 0.0
    social_security_benefits: float = 0.0
    capital_gain_loss: float = 0.0
    other_income: float = 0.0
    adjustments: float = 0.0

    @property
    def total_income(self) -> float:
        return (
            self.wages +
            self.taxable_interest +
            self.ordinary_dividends +
            self.ira_distributions +
            self.pensions_annuities +
            self.social_security_benefits +
            self.capital_gain_loss +
            self.other_income
        )

    @property
    def adjusted_gross_income(self) -> float:
        return self.total_income - self.adjustments

    def to_dict(self) -> dict:
        return {
            "wages": self.wages,
            "taxableInterest": self.taxable_interest,
            "ordinaryDividends": self.ordinary_dividends,
            "iraDistributions": self.ira_distributions,
            "pensionsAnnuities": self.pensions_annuities,
            "socialSecurityBenefits": self.social_security_benefits,
            "capitalGainLoss": self.capital_gain_loss,
            "otherIncome": self.other_income,
            "totalIncome": self.total_income,
            "adjustedGrossIncome": self.adjusted_gross_income,
        }


@dataclass
class DeductionSection:
    standard_deduction: float = 0.0
    itemized_deductions: float = 0.0
    qbi_deduction: float = 0.0
    taxable_income: float = 0.0

    @property
    def total_deductions(self) -> float:
        return max(self.standard_deduction, self.itemized_deductions) + self.qbi_deduction

    def to_dict(self) -> dict:
        return {
            "standardDeduction": self.standard_deduction,
            "itemizedDeductions": self.itemized_deductions,
            "qbiDeduction": self.qbi_deduction,
            "totalDeductions": self.total_deductions,
            "taxableIncome": self.taxable_income,
        }


@dataclass
class TaxSection:
    base_tax: float = 0.0
    schedule_d: float = 0.0
    excess_advance_ptc: float = 0.0
    other_taxes: float = 0.0
    marginal_rate: float = 0.0
    effective_rate: float = 0.0

    @property
    def total_tax(self) -> float:
        return self.base_tax + self.schedule_d + self.excess_advance_ptc + self.other_taxes

    def to_dict(self) -> dict:
        return {
            "baseTax": self.base_tax,
            "scheduleD": self.schedule_d,
            "excessAdvancePTC": self.excess_advance_ptc,
            "otherTaxes": self.other_taxes,
            "totalTax": self.total_tax,
            "marginalRate": self.marginal_rate,
            "effectiveRate": self.effective_rate,
        }


@dataclass
class CreditSection:
    """Credits are not computed yet; every line is zero."""
    child_tax_credit: float = 0.0
    credit_for_other_dependents: float = 0.0
    education_credits: float = 0.0
    retirement_savings_credit: float = 0.0
    child_care_credit: float = 0.0
    residential_energy_credit: float = 0.0
    other_credits: float = 0.0
    tax_before_credits: float = 0.0

    @property
    def total_credits(self) -> float:
        return (
            self.child_tax_credit +
            self.credit_for_other_dependents +
            self.education_credits +
            self.retirement_savings_credit +
            self.child_care_credit +
            self.residential_energy_credit +
            self.other_credits
        )

    @property
    def tax_after_credits(self) -> float:
        return max(0.0, self.tax_before_credits - self.total_credits)

    def to_dict(self) -> dict:
        return {
            "childTaxCredit": self.child_tax_credit,
            "creditForOtherDependents": self.credit_for_other_dependents,
            "educationCredits": self.education_credits,
            "retirementSavingsCredit": self.retirement_savings_credit,
            "childCareCredit": self.child_care_credit,
            "residentialEnergyCredit": self.residential_energy_credit,
            "otherCredits": self.other_credits,
            "totalCredits": self.total_credits,
            "taxAfterCredits": self.tax_after_credits,
        }


@dataclass
class OtherTaxSection:
    self_employment_tax: float = 0.0
    unreported_social_security_tax: float = 0.0
    additional_tax: float = 0.0

    @property
    def total_other_taxes(self) -> float:
        return self.self_employment_tax + self.unreported_social_security_tax + self.additional_tax

    def to_dict(self) -> dict:
        return {
            "selfEmploymentTax": self.self_employment_tax,
            "unreportedSocialSecurityTax": self.unreported_social_security_tax,
            "additionalTax": self.additional_tax,
            "totalOtherTaxes": self.total_other_taxes,
        }


@dataclass
class PaymentSection:
    federal_income_tax_withheld: float = 0.0
    estimated_tax_payments: float = 0.0
    earned_income_credit: float = 0.0
    additional_child_tax_credit: float = 0.0
    american_opportunity_credit: float = 0.0
    net_premium_tax_credit: float = 0.0
    amount_paid_with_extension: float = 0.0
    excess_social_security_withheld: float = 0.0

    @property
    def total_payments(self) -> float:
        return (
            self.federal_income_tax_withheld +
            self.estimated_tax_payments +
            self.earned_income_credit +
            self.additional_child_tax_credit +
            self.american_opportunity_credit +
            self.net_premium_tax_credit +
            self.amount_paid_with_extension +
            self.excess_social_security_withheld
        )

    def to_dict(self) -> dict:
        return {
            "federalIncomeTaxWithheld": self.federal_income_tax_withheld,
            "estimatedTaxPayments": self.estimated_tax_payments,
            "earnedIncomeCredit": self.earned_income_credit,
            "additionalChildTaxCredit": self.additional_child_tax_credit,
            "americanOpportunityCredit": self.american_opportunity_credit,
            "netPremiumTaxCredit": self.net_premium_tax_credit,
            "amountPaidWithExtension": self.amount_paid_with_extension,
            "excessSocialSecurityWithheld": self.excess_social_security_withheld,
            "totalPayments": self.total_payments,
        }


@dataclass
class W2Summary:
    """Per-document line in the return's W-2 listing."""
    employer: str
    ein: str
    wages: float
    federal_withheld: float
    social_security_wages: float
    medicare_wages: float

    def to_dict(self) -> dict:
        return {
            "employer": self.employer,
            "ein": self.ein,
            "wages": self.wages,
            "federalWithheld": self.federal_withheld,
            "socialSecurityWages": self.social_security_wages,
            "medicareWages": self.medicare_wages,
        }


@dataclass
class ReturnSummary:
    total_income: float
    total_deductions: float
    taxable_income: float
    total_tax: float
    total_withheld: float
    refund_or_owed: float

    @property
    def is_refund(self) -> bool:
        return self.refund_or_owed > 0

    @property
    def refund_amount(self) -> float:
        return self.refund_or_owed if self.is_refund else 0.0

    @property
    def amount_owed(self) -> float:
        return abs(self.refund_or_owed) if self.refund_or_owed < 0 else 0.0

    def to_dict(self) -> dict:
        return {
            "totalIncome": self.total_income,
            "totalDeductions": self.total_deductions,
            "taxableIncome": self.taxable_income,
            "totalTax": self.total_tax,
            "totalWithheld": self.total_withheld,
            "refundOrOwed": self.refund_or_owed,
            "isRefund": self.is_refund,
        }


@dataclass
class TaxReturnResult:
    """Complete Form 1040 computation result."""
    tax_year: int
    taxpayer: TaxpayerSection
    income: IncomeSection
    deductions: DeductionSection
    tax: TaxSection
    credits: CreditSection
    other_taxes: OtherTaxSection
    payments: PaymentSection
    summary: ReturnSummary
    dependents: List[Dependent] = field(default_factory=list)
    w2_information: List[W2Summary] = field(default_factory=list)
    form_type: str = "1040"

    def to_dict(self) -> dict:
        return {
            "taxYear": self.tax_year,
            "formType": self.form_type,
            "taxpayer": self.taxpayer.to_dict(),
            "income": self.income.to_dict(),
            "deductions": self.deductions.to_dict(),
            "tax": self.tax.to_dict(),
            "credits": self.credits.to_dict(),
            "otherTaxes": self.other_taxes.to_dict(),
            "payments": self.payments.to_dict(),
            "refundOrOwed": {
                "overpaid": self.summary.refund_amount,
                "refundAmount": self.summary.refund_amount,
                "amountOwed": self.summary.amount_owed,
                "penalty": 0,
            },
            "dependents": [d.to_dict() for d in self.dependents],
            "w2Information": [w.to_dict() for w in self.w2_information],
            "summary": self.summary.to_dict(),
        }
