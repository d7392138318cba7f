from datetime import date
from decimal import Decimal

import pytest

from finhub.core.exceptions import ConflictError, ValidationError
from finhub.schemas import Invoice, InvoiceStatus, LineItem, Payment
from finhub.services import invoice_service
from finhub.services.invoice_service import PaymentGuard


def make_invoice(**overrides):
    data = {
        "id": "inv-1",
        "invoice_number": "INV-001",
        "client_id": "c1",
        "issue_date": "2024-01-01",
        "due_date": "2024-01-31",
        "status": "sent",
        "total_amount": "100.00",
        "items": [{"description": "Work", "quantity": 1, "unit_price": 100}],
    }
    data.update(overrides)
    return Invoice.model_validate(data)


# ==================== TOTALS ====================

def test_totals_follow_formula():
    items = [LineItem(description="A", quantity=2, unit_price="10.50"), LineItem(description="B", quantity=1, unit_price=5)]
    totals = invoice_service.calculate_totals(items, tax_rate=10, discount_amount=3).rounded()
    assert totals.subtotal == Decimal("26.00")
    assert totals.tax_amount == Decimal("2.60")
    assert totals.total_amount == Decimal("25.60")


def test_totals_treat_bad_quantities_as_zero():
    items = [{"quantity": "-2", "unit_price": "10"}, {"quantity": "abc", "unit_price": "4"}, {"quantity": 3, "unitPrice": "2"}]
    totals = invoice_service.calculate_totals(items)
    assert totals.subtotal == Decimal("6")


def test_display_total_never_negative():
    totals = invoice_service.calculate_totals([LineItem(description="A", quantity=1, unit_price=5)], 0, 20)
    assert totals.total_amount == Decimal("-15")
    assert totals.display_total == Decimal("0.00")
    assert totals.as_dict()["total_amount"] == "0.00"


def test_parse_line_items_reads_indexed_rows():
    form = {
        "items[0][description]": "Design",
        "items[0][quantity]": "2",
        "items[0][unit_price]": "50",
        "items[1][description]": "Hosting",
        "items[1][quantity]": "1",
        "items[1][unit_price]": "9.99",
    }
    items = invoice_service.parse_line_items(form)
    assert [i.description for i in items] == ["Design", "Hosting"]
    assert items[1].unit_price == Decimal("9.99")


def test_validate_invoice_collects_errors():
    with pytest.raises(ValidationError) as exc:
        invoice_service.validate_invoice({"issue_date": "2024-02-01", "due_date": "2024-01-01", "tax_rate": 150}, [])
    errors = exc.value.errors
    assert "client_id" in errors
    assert "due_date" in errors
    assert "tax_rate" in errors
    assert "items" in errors


def test_build_invoice_payload_rounds_totals():
    items = [LineItem(description="A", quantity=3, unit_price="3.333")]
    payload = invoice_service.build_invoice_payload(
        {"client_id": "c1", "issue_date": date(2024, 1, 1), "due_date": date(2024, 1, 31), "tax_rate": 0}, items
    )
    assert payload["clientId"] == "c1"
    assert payload["total_amount"] == "10.00"
    assert payload["items"][0]["quantity"] == "3"


# ==================== PAYMENTS ====================

def test_balance_from_payment_list():
    invoice = make_invoice(payments=[{"amount": 30}, {"amount": "20.50"}])
    assert invoice_service.invoice_paid_amount(invoice) == Decimal("50.50")
    assert invoice_service.invoice_balance(invoice) == Decimal("49.50")


def test_balance_never_negative():
    assert invoice_service.balance_due(100, [{"amount": 150}]) == Decimal("0")


def test_payment_above_balance_is_rejected():
    with pytest.raises(ValidationError) as exc:
        invoice_service.validate_payment("100.01", "100", date(2024, 1, 5))
    assert "cannot exceed balance due" in exc.value.errors["amount"][0]


@pytest.mark.parametrize("amount", ["", "0", "-5", "abc"])
def test_payment_amount_must_be_positive_number(amount):
    with pytest.raises(ValidationError) as exc:
        invoice_service.validate_payment(amount, "100", date(2024, 1, 5))
    assert "amount" in exc.value.errors


def test_payment_requires_date():
    with pytest.raises(ValidationError) as exc:
        invoice_service.validate_payment("10", "100", None)
    assert "payment_date" in exc.value.errors


def test_payment_equal_to_balance_at_cent_precision():
    assert invoice_service.validate_payment("33.33", "33.333", date(2024, 1, 5)) == Decimal("33.33")


def test_partial_then_full_payment():
    invoice = make_invoice()
    partial = invoice_service.apply_payment(invoice, Payment(amount=40, payment_date="2024-01-10"))
    assert partial.status == InvoiceStatus.PARTIAL
    assert invoice_service.invoice_balance(partial) == Decimal("60")

    paid = invoice_service.apply_payment(partial, Payment(amount=60, payment_date="2024-01-12"))
    assert paid.status == InvoiceStatus.PAID
    assert invoice_service.invoice_balance(paid) == Decimal("0")


def test_payment_on_draft_settles_it():
    invoice = make_invoice(status="draft")
    paid = invoice_service.apply_payment(invoice, Payment(amount=100, payment_date="2024-01-10"))
    assert paid.status == InvoiceStatus.PAID


def test_build_payment_payload_maps_unknown_method_to_other():
    payload = invoice_service.build_payment_payload(Decimal("12.5"), date(2024, 1, 5), payment_method="barter")
    assert payload == {"amount": "12.50", "payment_date": "2024-01-05", "paymentMethod": "other"}


# ==================== STATUS ====================

def test_overdue_is_derived_from_due_date():
    invoice = make_invoice()
    assert invoice_service.effective_status(invoice, date(2024, 2, 1)) == InvoiceStatus.OVERDUE
    assert invoice_service.effective_status(invoice, date(2024, 1, 15)) == InvoiceStatus.SENT


def test_paid_invoice_is_never_overdue():
    invoice = make_invoice(status="paid", payments=[{"amount": 100}])
    assert invoice_service.effective_status(invoice, date(2024, 3, 1)) == InvoiceStatus.PAID


def test_actions_by_status():
    draft = make_invoice(status="draft")
    assert {"send", "cancel", "void", "record_payment", "edit_status"} <= set(invoice_service.available_actions(draft))

    paid = make_invoice(status="paid", payments=[{"amount": 100}])
    actions = invoice_service.available_actions(paid, date(2024, 3, 1))
    assert "record_payment" not in actions
    assert "send_reminder" not in actions
    assert "cancel" not in actions
    assert "void" in actions


def test_reminder_only_for_outstanding():
    assert invoice_service.can_send_reminder(make_invoice(), date(2024, 2, 1))
    assert not invoice_service.can_send_reminder(make_invoice(status="draft"), date(2024, 2, 1))


# ==================== GUARD ====================

def test_guard_refuses_concurrent_submission():
    guard = PaymentGuard()
    with guard.submitting("inv-1"):
        assert guard.is_busy("inv-1")
        with pytest.raises(ConflictError):
            with guard.submitting("inv-1"):
                pass
        with guard.submitting("inv-2"):
            pass
    assert not guard.is_busy("inv-1")


def test_guard_releases_after_error():
    guard = PaymentGuard()
    with pytest.raises(ValidationError):
        with guard.submitting("inv-1"):
            raise ValidationError.single("amount", "bad")
    assert not guard.is_busy("inv-1")
