"""
Pydantic Schemas for API Contracts

The upstream API mixes snake_case and camelCase keys, so every model accepts
both spellings.
"""
from pydantic import BaseModel, Field, ConfigDict, AliasChoices, field_validator
from pydantic.alias_generators import to_camel
from typing import Any, List, Literal, Optional, Union
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
import uuid

from finhub.core.money import ZERO, to_decimal, to_non_negative


def _coerce_date(value: Any) -> Any:
    """Accept ISO datetimes where a date is expected, and treat blanks as missing"""
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        if "T" in value:
            return value.split("T", 1)[0]
    if isinstance(value, datetime):
        return value.date()
    return value


def _lower(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    return str(value or "").strip().lower()


def normalize_tags(value: Any) -> List[str]:
    """Lower-case, strip and de-duplicate tags, keeping first-seen order"""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    tags: List[str] = []
    for tag in value:
        cleaned = str(tag).strip().lower()
        if cleaned and cleaned not in tags:
            tags.append(cleaned)
    return tags


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ==================== ENUMS ====================

class ClientStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PROSPECT = "prospect"
    CHURNED = "churned"


class ContractType(str, Enum):
    FIXED = "fixed"
    RETAINER = "retainer"
    HOURLY = "hourly"
    MILESTONE = "milestone"


class ContractStatus(str, Enum):
    DRAFT = "draft"
    PENDING_SIGNATURE = "pending_signature"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    VOID = "void"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    CASH = "cash"
    OTHER = "other"


class ExpenseStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ==================== PAGINATION ====================

class Pagination(ApiModel):
    page: int = 1
    limit: int = 20
    total_pages: int = Field(1, validation_alias=AliasChoices("total_pages", "totalPages", "pages"))
    total_items: int = Field(0, validation_alias=AliasChoices("total_items", "totalItems", "total"))

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    def window(self, size: int = 5) -> List[int]:
        """Page numbers to offer around the current page"""
        if self.total_pages <= 0:
            return []
        half = size // 2
        start = max(1, min(self.page - half, self.total_pages - size + 1))
        end = min(self.total_pages, start + size - 1)
        return list(range(start, end + 1))


# ==================== CLIENT SCHEMAS ====================

class Client(ApiModel):
    id: Optional[str] = None
    company_name: str = Field("", validation_alias=AliasChoices("company_name", "companyName", "name"))
    contact_name: Optional[str] = None
    email: Optional[str] = Field(None, validation_alias=AliasChoices("email", "contact_email", "contactEmail"))
    phone: Optional[str] = Field(None, validation_alias=AliasChoices("phone", "contact_phone", "contactPhone"))
    address: Optional[str] = None
    status: ClientStatus = ClientStatus.ACTIVE
    payment_terms: int = 30
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v):
        value = _lower(v)
        return value if value in {s.value for s in ClientStatus} else ClientStatus.ACTIVE

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v):
        return str(v) if v is not None else None

    @field_validator("payment_terms", mode="before")
    @classmethod
    def _terms(cls, v):
        return int(to_non_negative(v)) if v not in (None, "") else 30


# ==================== CONTRACT SCHEMAS ====================

class Contract(ApiModel):
    id: Optional[str] = None
    title: str = ""
    client_id: Optional[str] = None
    client_name: Optional[str] = Field(None, validation_alias=AliasChoices("client_name", "clientName", "company_name", "companyName"))
    contract_type: ContractType = Field(
        ContractType.FIXED, validation_alias=AliasChoices("contract_type", "contractType", "type")
    )
    value: Optional[Decimal] = Field(None, validation_alias=AliasChoices("value", "contract_value", "contractValue"))
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: ContractStatus = ContractStatus.DRAFT
    signed_date: Optional[date] = None
    auto_renew: bool = Field(False, validation_alias=AliasChoices("auto_renew", "autoRenew", "auto_renewal"))
    description: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("id", "client_id", mode="before")
    @classmethod
    def _ids_as_str(cls, v):
        return str(v) if v is not None else None

    @field_validator("start_date", "end_date", "signed_date", mode="before")
    @classmethod
    def _dates(cls, v):
        return _coerce_date(v)

    @field_validator("value", mode="before")
    @classmethod
    def _value(cls, v):
        return None if v in (None, "") else to_decimal(v)


# ==================== SUBSCRIPTION SCHEMAS ====================

class Subscription(ApiModel):
    id: Optional[str] = None
    name: str = Field("", validation_alias=AliasChoices("name", "subscription_name", "subscriptionName"))
    client_id: Optional[str] = None
    client_name: Optional[str] = Field(None, validation_alias=AliasChoices("client_name", "clientName", "company_name", "companyName"))
    contract_id: Optional[str] = None
    amount: Decimal = Field(ZERO, validation_alias=AliasChoices("amount", "billing_amount", "billingAmount"))
    # Kept as a raw string: cycles outside BillingCycle are legal and bill nothing
    billing_cycle: str = BillingCycle.MONTHLY.value
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    start_date: Optional[date] = None
    next_billing_date: Optional[date] = None
    cancellation_date: Optional[date] = Field(
        None, validation_alias=AliasChoices("cancellation_date", "cancellationDate", "cancelled_at", "cancelledAt")
    )
    auto_renew: bool = Field(True, validation_alias=AliasChoices("auto_renew", "autoRenew", "auto_renewal"))
    description: Optional[str] = None

    @field_validator("id", "client_id", "contract_id", mode="before")
    @classmethod
    def _ids_as_str(cls, v):
        return str(v) if v is not None else None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        return to_decimal(v)

    @field_validator("billing_cycle", mode="before")
    @classmethod
    def _cycle(cls, v):
        return _lower(v)

    @field_validator("start_date", "next_billing_date", "cancellation_date", mode="before")
    @classmethod
    def _dates(cls, v):
        return _coerce_date(v)


class MRRSummary(ApiModel):
    total_mrr: Decimal = Field(ZERO, validation_alias=AliasChoices("total_mrr", "totalMRR", "totalMrr", "mrr"))
    active_subscriptions: int = 0
    trial_count: int = 0
    # Authoritative upstream figure, displayed as-is
    churn_rate: Decimal = ZERO

    @field_validator("total_mrr", "churn_rate", mode="before")
    @classmethod
    def _decimals(cls, v):
        return to_decimal(v)

    @field_validator("active_subscriptions", "trial_count", mode="before")
    @classmethod
    def _counts(cls, v):
        return int(to_non_negative(v))


# ==================== INVOICE SCHEMAS ====================

class LineItem(ApiModel):
    description: str = ""
    quantity: Decimal = ZERO
    unit_price: Decimal = ZERO

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v):
        return (v or "").strip() if isinstance(v, str) or v is None else str(v)

    @field_validator("quantity", "unit_price", mode="before")
    @classmethod
    def _non_negative(cls, v):
        return to_non_negative(v)


class Payment(ApiModel):
    id: Optional[str] = None
    invoice_id: Optional[str] = None
    amount: Decimal = ZERO
    payment_date: Optional[date] = None
    payment_method: str = PaymentMethod.CREDIT_CARD.value
    reference_number: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("id", "invoice_id", mode="before")
    @classmethod
    def _ids_as_str(cls, v):
        return str(v) if v is not None else None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        return to_decimal(v)

    @field_validator("payment_date", mode="before")
    @classmethod
    def _dates(cls, v):
        return _coerce_date(v)


class Invoice(ApiModel):
    id: Optional[str] = None
    invoice_number: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = Field(None, validation_alias=AliasChoices("client_name", "clientName", "company_name", "companyName"))
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    items: List[LineItem] = Field(default_factory=list, validation_alias=AliasChoices("items", "line_items", "lineItems"))
    tax_rate: Decimal = ZERO
    discount_amount: Decimal = ZERO
    status: InvoiceStatus = InvoiceStatus.DRAFT
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    amount_paid: Decimal = ZERO
    balance_due: Optional[Decimal] = None
    payments: List[Payment] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("id", "client_id", mode="before")
    @classmethod
    def _ids_as_str(cls, v):
        return str(v) if v is not None else None

    @field_validator("tax_rate", "discount_amount", "subtotal", "tax_amount", "total_amount", "amount_paid", mode="before")
    @classmethod
    def _decimals(cls, v):
        return to_decimal(v)

    @field_validator("balance_due", mode="before")
    @classmethod
    def _balance(cls, v):
        return None if v in (None, "") else to_decimal(v)

    @field_validator("issue_date", "due_date", mode="before")
    @classmethod
    def _dates(cls, v):
        return _coerce_date(v)


# ==================== EXPENSE SCHEMAS ====================

class Expense(ApiModel):
    id: Optional[str] = None
    amount: Decimal = ZERO
    transaction_date: Optional[date] = None
    vendor_name: Optional[str] = None
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    payment_method_id: Optional[str] = None
    payment_method_name: Optional[str] = None
    status: ExpenseStatus = ExpenseStatus.PENDING
    description: Optional[str] = None
    notes: Optional[str] = None
    currency: str = "USD"
    tags: List[str] = Field(default_factory=list)
    is_tax_deductible: bool = True
    is_reimbursable: bool = False
    is_billable: bool = False

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        return to_decimal(v)

    @field_validator("transaction_date", mode="before")
    @classmethod
    def _dates(cls, v):
        return _coerce_date(v)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, v):
        return normalize_tags(v)

    @field_validator("id", "category_id", "payment_method_id", mode="before")
    @classmethod
    def _ids_as_str(cls, v):
        return str(v) if v not in (None, "") else None

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v):
        value = _lower(v)
        return value if value in {s.value for s in ExpenseStatus} else ExpenseStatus.PENDING

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, v):
        return (v or "USD").upper()


class CategoryTotal(ApiModel):
    category_id: Optional[str] = None
    category_name: str = "Uncategorized"
    total: Decimal = ZERO

    @field_validator("category_id", mode="before")
    @classmethod
    def _ids_as_str(cls, v):
        return str(v) if v not in (None, "") else None

    @field_validator("category_name", mode="before")
    @classmethod
    def _name(cls, v):
        return v or "Uncategorized"

    @field_validator("total", mode="before")
    @classmethod
    def _total(cls, v):
        return to_decimal(v)


class DailyAmount(ApiModel):
    day: Optional[date] = Field(None, validation_alias=AliasChoices("day", "date"))
    amount: Decimal = ZERO

    @field_validator("day", mode="before")
    @classmethod
    def _dates(cls, v):
        return _coerce_date(v)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        return to_decimal(v)


class ExpenseStats(ApiModel):
    """Body of GET /expenses/stats"""
    total_amount: Decimal = ZERO
    transaction_count: int = 0
    average_amount: Decimal = ZERO
    burn_rate: Decimal = ZERO
    category_breakdown: List[CategoryTotal] = Field(default_factory=list)
    daily_trend: List[DailyAmount] = Field(default_factory=list)

    @field_validator("total_amount", "average_amount", "burn_rate", mode="before")
    @classmethod
    def _decimals(cls, v):
        return to_decimal(v)

    @field_validator("transaction_count", mode="before")
    @classmethod
    def _count(cls, v):
        return int(to_non_negative(v))

    @field_validator("category_breakdown", "daily_trend", mode="before")
    @classmethod
    def _rows(cls, v):
        return v or []


# ==================== ATTACHMENT SCHEMAS ====================

class Attachment(ApiModel):
    id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    file_name: str = Field("", validation_alias=AliasChoices("file_name", "fileName", "original_name"))
    file_size: int = 0
    mime_type: Optional[str] = None
    uploader_email: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("id", "entity_id", mode="before")
    @classmethod
    def _ids_as_str(cls, v):
        return str(v) if v is not None else None

    @field_validator("file_size", mode="before")
    @classmethod
    def _size(cls, v):
        return int(to_non_negative(v))


# ==================== BULK IMPORT SCHEMAS ====================

class ExtractedExpense(ApiModel):
    """A candidate expense the extraction service produced from one file"""
    kind: Literal["ok"] = "ok"
    temp_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    file_name: str = ""
    vendor_name: Optional[str] = None
    transaction_date: Optional[date] = None
    amount: Optional[Decimal] = None
    category_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    line_items: Optional[str] = None
    currency: str = "USD"
    confidence: Confidence = Confidence.MEDIUM
    exclude: bool = False

    @field_validator("transaction_date", mode="before")
    @classmethod
    def _dates(cls, v):
        return _coerce_date(v)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        if v in (None, ""):
            return None
        return to_decimal(v, default=None)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        value = _lower(v)
        return value if value in {c.value for c in Confidence} else Confidence.MEDIUM

    @field_validator("category_id", "payment_method_id", mode="before")
    @classmethod
    def _refs(cls, v):
        return str(v) if v not in (None, "") else None

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, v):
        return (v or "USD").upper()


class FailedExtraction(ApiModel):
    """A file the extraction service could not read"""
    kind: Literal["error"] = "error"
    temp_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    file_name: str = ""
    message: str = Field("Extraction failed", validation_alias=AliasChoices("message", "error"))

    @property
    def exclude(self) -> bool:
        return True


ReviewRow = Union[ExtractedExpense, FailedExtraction]


def review_row_from_api(data: dict) -> ReviewRow:
    """Tag a raw extraction result as a usable row or a failed file"""
    if data.get("error"):
        return FailedExtraction.model_validate(data)
    return ExtractedExpense.model_validate(data)


class BulkImportSession(ApiModel):
    session_id: str
    rows: List[ReviewRow] = Field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> "BulkImportSession":
        extracted = data.get("extractedExpenses") or data.get("extracted_expenses") or []
        return cls(
            session_id=str(data.get("sessionId") or data.get("session_id") or ""),
            rows=[review_row_from_api(row) for row in extracted],
        )


class ConfirmError(ApiModel):
    temp_id: Optional[str] = None
    vendor_name: Optional[str] = None
    error: str = "Unknown error"


class BulkConfirmResult(ApiModel):
    created: int = 0
    failed: int = 0
    errors: List[ConfirmError] = Field(default_factory=list)


# ==================== REVENUE SCHEMAS ====================

class ReceivableInvoice(ApiModel):
    """Row of GET /revenue/receivables"""
    invoice_id: Optional[str] = Field(None, validation_alias=AliasChoices("invoice_id", "invoiceId", "id"))
    invoice_number: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = Field(None, validation_alias=AliasChoices("client_name", "clientName", "company_name"))
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    total_amount: Decimal = ZERO
    balance_due: Decimal = ZERO
    status: InvoiceStatus = InvoiceStatus.SENT

    @field_validator("invoice_id", "client_id", mode="before")
    @classmethod
    def _ids_as_str(cls, v):
        return str(v) if v is not None else None

    @field_validator("total_amount", "balance_due", mode="before")
    @classmethod
    def _decimals(cls, v):
        return to_decimal(v)

    @field_validator("issue_date", "due_date", mode="before")
    @classmethod
    def _dates(cls, v):
        return _coerce_date(v)


class RevenueDashboard(ApiModel):
    """Body of GET /revenue/dashboard"""
    mrr: Decimal = ZERO
    arr: Decimal = ZERO
    outstanding_balance: Decimal = ZERO
    invoice_stats: dict = Field(default_factory=dict)

    @field_validator("mrr", "arr", "outstanding_balance", mode="before")
    @classmethod
    def _decimals(cls, v):
        return to_decimal(v)

    @field_validator("invoice_stats", mode="before")
    @classmethod
    def _stats(cls, v):
        return v if isinstance(v, dict) else {}
