"""
Expense Records - field rules shared by the expense form and the bulk import review
"""
from datetime import date
from typing import Any, Dict, List, Mapping, Optional
import re

from finhub.core.exceptions import ValidationError
from finhub.core.money import ZERO, as_api_amount, to_decimal
from finhub.schemas import ExpenseStatus, normalize_tags

MAX_VENDOR_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000
MAX_NOTES_LENGTH = 2000
MAX_TAGS = 10
MAX_TAG_LENGTH = 50

TAG_PATTERN = re.compile(r"^[a-z0-9-]+$")
CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")


def parse_tags(value: Any) -> List[str]:
    """Comma separated text (or a list) to lower-case, de-duplicated tags"""
    return normalize_tags(value)


def expense_field_errors(amount: Any, transaction_date: Optional[date], vendor_name: Optional[str] = None,
                         description: Optional[str] = None, notes: Optional[str] = None,
                         today: Optional[date] = None) -> Dict[str, List[str]]:
    """Errors keyed by field name; empty when the values can be saved"""
    today = today or date.today()
    errors: Dict[str, List[str]] = {}

    value = to_decimal(amount, default=None) if amount not in (None, "") else None
    if value is None:
        errors["amount"] = ["Amount is required"]
    elif value <= ZERO:
        errors["amount"] = ["Amount must be positive"]

    if transaction_date is None:
        errors["transaction_date"] = ["Transaction date is required"]
    elif transaction_date > today:
        errors["transaction_date"] = ["Transaction date cannot be in the future"]

    if vendor_name and len(vendor_name) > MAX_VENDOR_LENGTH:
        errors["vendor_name"] = [f"Vendor name must not exceed {MAX_VENDOR_LENGTH} characters"]
    if description and len(description) > MAX_DESCRIPTION_LENGTH:
        errors["description"] = [f"Description must not exceed {MAX_DESCRIPTION_LENGTH} characters"]
    if notes and len(notes) > MAX_NOTES_LENGTH:
        errors["notes"] = [f"Notes must not exceed {MAX_NOTES_LENGTH} characters"]
    return errors


def tag_errors(tags: List[str]) -> List[str]:
    messages = []
    if len(tags) > MAX_TAGS:
        messages.append(f"No more than {MAX_TAGS} tags are allowed")
    for tag in tags:
        if len(tag) > MAX_TAG_LENGTH:
            messages.append(f'Tag "{tag}" must not exceed {MAX_TAG_LENGTH} characters')
        elif not TAG_PATTERN.match(tag):
            messages.append(f'Tag "{tag}" may only contain lowercase letters, numbers and hyphens')
    return messages


def validate_expense(data: Mapping[str, Any], today: Optional[date] = None) -> None:
    """Raise ValidationError for anything the server would reject"""
    errors = expense_field_errors(
        data.get("amount"), data.get("transaction_date"), data.get("vendor_name"),
        data.get("description"), data.get("notes"), today,
    )

    currency = (data.get("currency") or "USD").upper()
    if not CURRENCY_PATTERN.match(currency):
        errors["currency"] = ["Currency must be a three-letter code"]

    status = data.get("status") or ExpenseStatus.PENDING.value
    if status not in {s.value for s in ExpenseStatus}:
        errors["status"] = ["Unknown status"]

    messages = tag_errors(parse_tags(data.get("tags")))
    if messages:
        errors["tags"] = messages

    if errors:
        raise ValidationError(errors)


def build_expense_payload(data: Mapping[str, Any]) -> dict:
    """Request body for POST/PUT /expenses"""
    transaction_date = data.get("transaction_date")
    return {
        "amount": as_api_amount(data.get("amount")),
        "transactionDate": str(transaction_date) if transaction_date else None,
        "vendorName": data.get("vendor_name") or "",
        "categoryId": data.get("category_id") or None,
        "paymentMethodId": data.get("payment_method_id") or None,
        "description": data.get("description") or "",
        "notes": data.get("notes") or "",
        "currency": (data.get("currency") or "USD").upper(),
        "tags": parse_tags(data.get("tags")),
        "isTaxDeductible": bool(data.get("is_tax_deductible")),
        "isReimbursable": bool(data.get("is_reimbursable")),
        "isBillable": bool(data.get("is_billable")),
        "status": data.get("status") or ExpenseStatus.PENDING.value,
    }
