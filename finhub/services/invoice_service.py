"""
Invoice Ledger - totals, payments, balance and status
"""
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set
import threading
import logging

from finhub.core.exceptions import ConflictError, ValidationError
from finhub.core.money import (
    ZERO, as_api_amount, format_money, percent_of, quantize_money, to_decimal, to_non_negative
)
from finhub.schemas import Invoice, InvoiceStatus, LineItem, Payment, PaymentMethod
from finhub.services.lifecycle import StateMachine, Transition

logger = logging.getLogger(__name__)

S = InvoiceStatus

# States from which a payment may still be taken
PAYABLE_STATES = frozenset({S.DRAFT.value, S.SENT.value, S.VIEWED.value, S.OVERDUE.value, S.PARTIAL.value})
# States that count as issued and unpaid for overdue/reminder purposes
OUTSTANDING_STATES = frozenset({S.SENT.value, S.VIEWED.value, S.PARTIAL.value, S.OVERDUE.value})

INVOICE_LIFECYCLE = StateMachine("invoice", [
    Transition("send", frozenset({S.DRAFT.value}), S.SENT.value, "Send"),
    Transition("view", frozenset({S.SENT.value}), S.VIEWED.value, "View", user_action=False),
    Transition("mark_overdue", frozenset({S.SENT.value, S.VIEWED.value, S.PARTIAL.value}), S.OVERDUE.value,
               "Mark overdue", user_action=False),
    Transition("record_partial_payment", PAYABLE_STATES, S.PARTIAL.value, "Record payment", user_action=False),
    Transition("settle", PAYABLE_STATES, S.PAID.value, "Settle", user_action=False),
    Transition("cancel", frozenset(s.value for s in S) - {S.PAID.value, S.CANCELLED.value, S.VOID.value},
               S.CANCELLED.value, "Cancel"),
    Transition("void", frozenset(s.value for s in S) - {S.VOID.value}, S.VOID.value, "Void"),
])


@dataclass(frozen=True)
class InvoiceTotals:
    """Unrounded totals; round with rounded() at the display/persistence boundary"""
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    def rounded(self) -> "InvoiceTotals":
        return InvoiceTotals(
            subtotal=quantize_money(self.subtotal),
            tax_amount=quantize_money(self.tax_amount),
            total_amount=quantize_money(self.total_amount),
        )

    @property
    def display_total(self) -> Decimal:
        """Total as shown to users: never negative"""
        return quantize_money(max(self.total_amount, ZERO))

    def as_dict(self) -> Dict[str, str]:
        rounded = self.rounded()
        return {
            "subtotal": str(rounded.subtotal),
            "tax_amount": str(rounded.tax_amount),
            "total_amount": str(self.display_total),
        }


# ==================== TOTALS ====================

def line_total(item: Any) -> Decimal:
    if isinstance(item, LineItem):
        return item.quantity * item.unit_price
    quantity = to_non_negative(_get(item, "quantity"))
    unit_price = to_non_negative(_get(item, "unit_price", "unitPrice"))
    return quantity * unit_price


def calculate_totals(items: Iterable[Any], tax_rate: Any = 0, discount_amount: Any = 0) -> InvoiceTotals:
    """
    subtotal = sum(quantity * unit_price)
    tax      = subtotal * tax_rate / 100
    total    = subtotal + tax - discount
    """
    subtotal = ZERO
    for item in items:
        subtotal += line_total(item)
    tax_amount = percent_of(subtotal, tax_rate)
    total_amount = subtotal + tax_amount - to_decimal(discount_amount)
    return InvoiceTotals(subtotal=subtotal, tax_amount=tax_amount, total_amount=total_amount)


def invoice_totals(invoice: Invoice) -> InvoiceTotals:
    return calculate_totals(invoice.items, invoice.tax_rate, invoice.discount_amount)


def _get(item: Any, *keys: str) -> Any:
    for key in keys:
        if isinstance(item, Mapping):
            if key in item:
                return item[key]
        elif hasattr(item, key):
            return getattr(item, key)
    return None


def parse_line_items(form: Mapping[str, Any]) -> List[LineItem]:
    """Read items[N][description|quantity|unit_price] rows from a submitted form"""
    items = []
    index = 0
    while any(f'items[{index}][{field}]' in form for field in ("description", "quantity", "unit_price")):
        items.append(LineItem(
            description=form.get(f'items[{index}][description]') or "",
            quantity=form.get(f'items[{index}][quantity]'),
            unit_price=form.get(f'items[{index}][unit_price]'),
        ))
        index += 1
    return items


# ==================== VALIDATION ====================

def validate_line_items(items: Sequence[LineItem]) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    if not items:
        errors["items"] = ["At least one line item is required"]
    for index, item in enumerate(items):
        if not item.description:
            errors.setdefault(f"items[{index}][description]", []).append("Description is required")
    return errors


def validate_invoice(data: Mapping[str, Any], items: Sequence[LineItem]) -> None:
    """Raise ValidationError for anything that would block submission"""
    errors: Dict[str, List[str]] = {}
    if not data.get("client_id"):
        errors["client_id"] = ["Client is required"]

    issue_date = data.get("issue_date")
    if not issue_date:
        errors["issue_date"] = ["Issue date is required"]
    due_date = data.get("due_date")
    if issue_date and due_date and str(due_date) < str(issue_date):
        errors["due_date"] = ["Due date cannot be before the issue date"]

    tax_rate = to_decimal(data.get("tax_rate"))
    if tax_rate < ZERO or tax_rate > Decimal("100"):
        errors["tax_rate"] = ["Tax rate must be between 0 and 100"]
    if to_decimal(data.get("discount_amount")) < ZERO:
        errors["discount_amount"] = ["Discount cannot be negative"]

    errors.update(validate_line_items(items))
    if errors:
        raise ValidationError(errors)


def build_invoice_payload(data: Mapping[str, Any], items: Sequence[LineItem]) -> dict:
    """Request body for POST/PUT /invoices; server recomputes and owns the totals"""
    totals = calculate_totals(items, data.get("tax_rate"), data.get("discount_amount")).rounded()
    payload = {
        "clientId": data.get("client_id"),
        "issue_date": str(data.get("issue_date")),
        "due_date": str(data["due_date"]) if data.get("due_date") else None,
        "tax_rate": str(to_decimal(data.get("tax_rate"))),
        "discount_amount": as_api_amount(data.get("discount_amount")),
        "notes": data.get("notes") or None,
        "subtotal": str(totals.subtotal),
        "tax_amount": str(totals.tax_amount),
        "total_amount": str(totals.total_amount),
        "items": [
            {
                "description": item.description,
                "quantity": str(item.quantity),
                "unit_price": str(item.unit_price),
            }
            for item in items
        ],
    }
    if data.get("payment_terms") not in (None, ""):
        payload["payment_terms"] = data.get("payment_terms")
    return payload


# ==================== PAYMENTS & BALANCE ====================

def total_paid(payments: Iterable[Any]) -> Decimal:
    paid = ZERO
    for payment in payments:
        amount = payment.amount if isinstance(payment, Payment) else _get(payment, "amount")
        paid += to_decimal(amount)
    return paid


def balance_due(total_amount: Any, payments: Iterable[Any]) -> Decimal:
    """max(0, total - sum(payments))"""
    balance = to_decimal(total_amount) - total_paid(payments)
    return balance if balance > ZERO else ZERO


def invoice_paid_amount(invoice: Invoice) -> Decimal:
    # The payment list is authoritative once fetched; amount_paid covers list views without it
    if invoice.payments:
        return total_paid(invoice.payments)
    return invoice.amount_paid


def invoice_balance(invoice: Invoice) -> Decimal:
    if not invoice.payments and invoice.balance_due is not None:
        return invoice.balance_due if invoice.balance_due > ZERO else ZERO
    balance = invoice.total_amount - invoice_paid_amount(invoice)
    return balance if balance > ZERO else ZERO


def validate_payment(amount: Any, current_balance: Any, payment_date: Any) -> Decimal:
    """
    Check a payment at entry time and return the parsed amount.

    An amount above the balance is rejected, never clamped.
    """
    errors: Dict[str, List[str]] = {}
    balance = to_decimal(current_balance)
    parsed: Optional[Decimal] = None

    if amount is None or (isinstance(amount, str) and not amount.strip()):
        errors["amount"] = ["Amount is required"]
    else:
        parsed = to_decimal(amount, default=None)
        if parsed is None:
            errors["amount"] = ["Amount must be a number"]
        elif parsed <= ZERO:
            errors["amount"] = ["Amount must be positive"]
        elif quantize_money(parsed) > quantize_money(balance):
            errors["amount"] = [f"Amount cannot exceed balance due ({format_money(balance)})"]

    if not payment_date:
        errors["payment_date"] = ["Payment date is required"]

    if errors:
        raise ValidationError(errors)
    return parsed


def status_after_payment(status: Any, total_amount: Any, paid: Any) -> str:
    """Status reached once paid is the cumulative amount received"""
    remaining = to_decimal(total_amount) - to_decimal(paid)
    event = "settle" if remaining <= ZERO else "record_partial_payment"
    return INVOICE_LIFECYCLE.transition(status, event)


def apply_payment(invoice: Invoice, payment: Payment) -> Invoice:
    """
    Invoice as it will look once the server accepts payment.

    Used to check a payment before it is submitted; the view still refetches
    the invoice afterwards instead of trusting this projection.
    """
    current_balance = invoice_balance(invoice)
    validate_payment(payment.amount, current_balance, payment.payment_date)
    payments = list(invoice.payments) + [payment]
    paid = invoice_paid_amount(invoice) + payment.amount
    new_status = status_after_payment(invoice.status, invoice.total_amount, paid)
    return invoice.model_copy(update={
        "payments": payments,
        "amount_paid": paid,
        "balance_due": max(invoice.total_amount - paid, ZERO),
        "status": InvoiceStatus(new_status),
    })


def build_payment_payload(amount: Decimal, payment_date: Any, payment_method: Optional[str] = None,
                          reference_number: Optional[str] = None, notes: Optional[str] = None) -> dict:
    """Request body for POST /invoices/:id/payment"""
    method = payment_method or PaymentMethod.CREDIT_CARD.value
    if method not in {m.value for m in PaymentMethod}:
        method = PaymentMethod.OTHER.value
    payload = {
        "amount": as_api_amount(amount),
        "payment_date": str(payment_date),
        "paymentMethod": method,
    }
    if reference_number:
        payload["reference_number"] = reference_number
    if notes:
        payload["notes"] = notes
    return payload


# ==================== STATUS ====================

def effective_status(invoice: Invoice, today: Optional[date] = None) -> InvoiceStatus:
    """Stored status, with overdue derived for issued invoices past their due date"""
    today = today or date.today()
    if (invoice.status.value in {S.SENT.value, S.VIEWED.value, S.PARTIAL.value}
            and invoice.due_date is not None
            and invoice.due_date < today
            and invoice_balance(invoice) > ZERO):
        return InvoiceStatus.OVERDUE
    return invoice.status


def can_edit_status(status: Any) -> bool:
    """Manual status edits are only allowed on drafts"""
    value = status.value if isinstance(status, InvoiceStatus) else str(status)
    return value == S.DRAFT.value


def can_record_payment(invoice: Invoice) -> bool:
    return invoice.status.value in PAYABLE_STATES and invoice_balance(invoice) > ZERO


def can_send_reminder(invoice: Invoice, today: Optional[date] = None) -> bool:
    return effective_status(invoice, today).value in OUTSTANDING_STATES and invoice_balance(invoice) > ZERO


def available_actions(invoice: Invoice, today: Optional[date] = None) -> List[str]:
    actions = [t.event for t in INVOICE_LIFECYCLE.available(invoice.status)]
    if can_record_payment(invoice):
        actions.append("record_payment")
    if can_send_reminder(invoice, today):
        actions.append("send_reminder")
    if can_edit_status(invoice.status):
        actions.append("edit_status")
    return actions


# ==================== SUBMISSION GUARD ====================

class PaymentGuard:
    """
    Serializes payment submission per invoice.

    A second submission for an invoice whose previous one has not resolved is
    refused instead of queued, so two requests never both act on the same
    stale balance.
    """

    def __init__(self):
        self._in_flight: Set[str] = set()
        self._lock = threading.Lock()

    @contextmanager
    def submitting(self, invoice_id: Any) -> Iterator[None]:
        key = str(invoice_id)
        with self._lock:
            if key in self._in_flight:
                logger.info("Rejected concurrent payment submission for invoice %s", key)
                raise ConflictError("A payment for this invoice is already being submitted")
            self._in_flight.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(key)

    def is_busy(self, invoice_id: Any) -> bool:
        with self._lock:
            return str(invoice_id) in self._in_flight


payment_guard = PaymentGuard()
