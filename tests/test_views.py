import io
from datetime import date
from decimal import Decimal

from finhub.api.client import AuthContext
from finhub.api.resources import ListResult
from finhub.core.exceptions import ApiError, AuthenticationError
from finhub.schemas import (
    Attachment, BulkConfirmResult, BulkImportSession, Client, Contract, Expense, ExpenseStats, Invoice, MRRSummary,
    ReceivableInvoice, RevenueDashboard, Subscription
)
from finhub.services.invoice_service import payment_guard


def make_invoice(**overrides):
    data = {"id": "inv-1", "invoice_number": "INV-001", "client_id": "c1", "status": "sent",
            "issue_date": "2024-01-01", "due_date": "2024-01-31", "total_amount": "100.00",
            "items": [{"description": "Work", "quantity": 1, "unit_price": 100}]}
    data.update(overrides)
    return Invoice.model_validate(data)


# ==================== AUTH ====================

def test_pages_require_login(client):
    response = client.get("/invoices")
    assert response.status_code == 302
    assert "/auth/login" in response.headers["Location"]


def test_login_success_redirects(client, fake_api):
    response = client.post("/auth/login", data={"email": "a@b.c", "password": "pw", "next": "/invoices"})
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/invoices")
    fake_api.auth.login.assert_called_once_with("a@b.c", "pw")


def test_login_failure_shows_message(client, fake_api):
    fake_api.auth.login.side_effect = AuthenticationError("Invalid credentials")
    response = client.post("/auth/login", data={"email": "a@b.c", "password": "bad"})
    assert response.status_code == 401
    assert b"Invalid credentials" in response.data


def test_expired_session_redirects_to_login(logged_in, fake_api):
    fake_api.invoices.get.side_effect = AuthenticationError()
    response = logged_in.get("/invoices/inv-1")
    assert response.status_code == 302
    assert "/auth/login" in response.headers["Location"]


# ==================== DASHBOARD ====================

def test_dashboard_shows_mrr_and_aging(logged_in, fake_api):
    fake_api.subscriptions.stats.return_value = MRRSummary(total_mrr=Decimal("1250"), active_subscriptions=4)
    fake_api.revenue.receivables.return_value = [
        ReceivableInvoice(invoice_id="1", invoice_number="INV-1", client_name="Acme",
                          due_date=date(2000, 1, 1), balance_due=Decimal("75.50"), status="sent"),
    ]
    fake_api.subscriptions.renewals.return_value = []
    fake_api.contracts.expiring.return_value = []
    response = logged_in.get("/dashboard")
    assert response.status_code == 200
    assert b"$1,250.00" in response.data
    assert b"$15,000.00" in response.data
    assert b"$75.50" in response.data


def test_dashboard_survives_api_outage(logged_in, fake_api):
    fake_api.subscriptions.stats.side_effect = ApiError("Backend connection error")
    fake_api.revenue.receivables.side_effect = ApiError("Backend connection error")
    fake_api.subscriptions.renewals.side_effect = ApiError("Backend connection error")
    fake_api.contracts.expiring.side_effect = ApiError("Backend connection error")
    response = logged_in.get("/dashboard")
    assert response.status_code == 200
    assert b"unavailable" in response.data


def test_receivables_export_is_xlsx(logged_in, fake_api):
    fake_api.revenue.receivables.return_value = []
    response = logged_in.get("/dashboard/receivables.xlsx")
    assert response.status_code == 200
    assert response.headers["Content-Type"].startswith("application/vnd.openxmlformats")
    assert response.data[:2] == b"PK"


# ==================== INVOICES ====================

def test_preview_totals_json(logged_in):
    response = logged_in.post("/invoices/preview", json={
        "items": [{"quantity": 2, "unit_price": "10.50"}], "tax_rate": "10", "discount_amount": "1",
    })
    assert response.get_json() == {"subtotal": "21.00", "tax_amount": "2.10", "total_amount": "22.10"}


def test_preview_totals_ignores_non_object_json(logged_in):
    response = logged_in.post("/invoices/preview", json=[{"quantity": 1, "unit_price": "5"}])
    assert response.status_code == 200
    assert response.get_json()["subtotal"] == "0.00"


def test_partial_payment_is_recorded(logged_in, fake_api, flashed):
    fake_api.invoices.get.return_value = make_invoice()
    fake_api.invoices.payments.return_value = []
    response = logged_in.post("/invoices/inv-1/payment", data={
        "amount": "40", "payment_date": "2024-01-10", "payment_method": "bank_transfer",
    })
    assert response.status_code == 302
    invoice_id, payload = fake_api.invoices.record_payment.call_args.args
    assert invoice_id == "inv-1"
    assert payload == {"amount": "40.00", "payment_date": "2024-01-10", "paymentMethod": "bank_transfer"}
    assert "Payment recorded successfully" in flashed()


def test_full_payment_reports_paid(logged_in, fake_api, flashed):
    fake_api.invoices.get.return_value = make_invoice(payments=[{"amount": "60"}])
    logged_in.post("/invoices/inv-1/payment", data={"amount": "40", "payment_date": "2024-01-10"})
    assert "Payment recorded. Invoice is paid in full" in flashed()


def test_overpayment_is_rejected_before_submit(logged_in, fake_api, flashed):
    fake_api.invoices.get.return_value = make_invoice()
    fake_api.invoices.payments.return_value = []
    logged_in.post("/invoices/inv-1/payment", data={"amount": "100.01", "payment_date": "2024-01-10"})
    fake_api.invoices.record_payment.assert_not_called()
    assert any("cannot exceed balance due" in message for message in flashed())


def test_payment_on_paid_invoice_conflicts(logged_in, fake_api, flashed):
    fake_api.invoices.get.return_value = make_invoice(status="paid", payments=[{"amount": "100"}])
    logged_in.post("/invoices/inv-1/payment", data={"amount": "1", "payment_date": "2024-01-10"})
    fake_api.invoices.record_payment.assert_not_called()
    assert "Payments cannot be recorded on a paid invoice" in flashed()


def test_concurrent_payment_is_refused(logged_in, fake_api, flashed):
    fake_api.invoices.get.return_value = make_invoice()
    with payment_guard.submitting("inv-1"):
        logged_in.post("/invoices/inv-1/payment", data={"amount": "10", "payment_date": "2024-01-10"})
    fake_api.invoices.record_payment.assert_not_called()
    assert "A payment for this invoice is already being submitted" in flashed()


def test_cancel_paid_invoice_is_refused(logged_in, fake_api, flashed):
    fake_api.invoices.get.return_value = make_invoice(status="paid", payments=[{"amount": "100"}])
    logged_in.post("/invoices/inv-1/action/cancel")
    fake_api.invoices.update_status.assert_not_called()
    assert "Cannot cancel an invoice that is paid" in flashed()


def test_status_edit_only_on_draft(logged_in, fake_api, flashed):
    fake_api.invoices.get.return_value = make_invoice()
    logged_in.post("/invoices/inv-1/status", data={"status": "paid"})
    fake_api.invoices.update_status.assert_not_called()
    assert "Status can only be edited on draft invoices" in flashed()


def test_invoice_detail_renders(logged_in, fake_api):
    fake_api.invoices.get.return_value = make_invoice(payments=[{"amount": "25", "payment_date": "2024-01-05"}])
    response = logged_in.get("/invoices/inv-1")
    assert response.status_code == 200
    assert b"$75.00" in response.data
    assert b"Record payment" in response.data


# ==================== CONTRACTS ====================

def test_sign_requires_date(logged_in, fake_api, flashed):
    fake_api.contracts.get.return_value = Contract(id="k1", status="draft")
    logged_in.post("/contracts/k1/sign", data={})
    fake_api.contracts.transition.assert_not_called()
    assert "Signed date is required" in flashed()


def test_sign_with_date(logged_in, fake_api, flashed):
    contract = Contract(id="k1", status="draft")
    fake_api.contracts.get.return_value = contract
    logged_in.post("/contracts/k1/sign", data={"signed_date": "2024-01-02", "signed_by": "Pat"})
    fake_api.contracts.transition.assert_called_once_with(
        contract, "sign", signed_date=date(2024, 1, 2), signed_by="Pat"
    )
    assert "Contract pending signature" in flashed()


def test_repeated_sign_is_noop(logged_in, fake_api, flashed):
    fake_api.contracts.get.return_value = Contract(id="k1", status="pending_signature")
    logged_in.post("/contracts/k1/sign", data={})
    fake_api.contracts.transition.assert_not_called()
    assert "Contract is already pending signature" in flashed()


def test_completed_contract_cannot_be_cancelled(logged_in, fake_api, flashed):
    fake_api.contracts.get.return_value = Contract(id="k1", status="completed")
    logged_in.post("/contracts/k1/cancel")
    fake_api.contracts.transition.assert_not_called()
    assert "Cannot cancel a contract that is completed" in flashed()


def test_expire_is_not_a_user_action(logged_in, fake_api, flashed):
    fake_api.contracts.get.return_value = Contract(id="k1", status="active")
    logged_in.post("/contracts/k1/expire")
    fake_api.contracts.transition.assert_not_called()
    assert "Contracts cannot be marked expire by hand" in flashed()


# ==================== SUBSCRIPTIONS ====================

def test_cancel_subscription_sends_reason(logged_in, fake_api, flashed):
    fake_api.subscriptions.get.return_value = Subscription(id="s1", status="active", amount=Decimal("10"))
    logged_in.post("/subscriptions/s1/cancel", data={"reason": "Too expensive"})
    fake_api.subscriptions.transition.assert_called_once_with("s1", "cancel", reason="Too expensive")
    assert "Subscription cancelled" in flashed()


def test_trial_cannot_be_paused(logged_in, fake_api, flashed):
    fake_api.subscriptions.get.return_value = Subscription(id="s1", status="trial")
    logged_in.post("/subscriptions/s1/pause")
    fake_api.subscriptions.transition.assert_not_called()
    assert "Cannot pause a subscription that is trial" in flashed()


def test_edit_subscription_updates(logged_in, fake_api, flashed):
    fake_api.subscriptions.get.return_value = Subscription(id="s1", name="Hosting", client_id="c1", status="active",
                                                           amount=Decimal("10"), billing_cycle="monthly")
    page = logged_in.get("/subscriptions/s1/edit")
    assert page.status_code == 200
    assert b"Hosting" in page.data

    response = logged_in.post("/subscriptions/s1/edit", data={
        "name": "Hosting Pro", "client_id": "c1", "amount": "25", "billing_cycle": "monthly",
        "start_date": "2024-01-01",
    })
    assert response.status_code == 302
    subscription_id, payload = fake_api.subscriptions.update.call_args.args
    assert subscription_id == "s1"
    assert payload["name"] == "Hosting Pro"
    assert payload["amount"] == "25"
    assert "Subscription updated successfully" in flashed()


def test_cancelled_subscription_cannot_be_edited(logged_in, fake_api, flashed):
    fake_api.subscriptions.get.return_value = Subscription(id="s1", status="cancelled")
    response = logged_in.post("/subscriptions/s1/edit", data={"name": "x"})
    assert response.status_code == 302
    fake_api.subscriptions.update.assert_not_called()
    assert "A cancelled subscription can no longer be edited" in flashed()


# ==================== BULK IMPORT ====================

def extracted_session():
    return BulkImportSession.from_api({
        "sessionId": "sess-1",
        "extractedExpenses": [
            {"tempId": "t1", "fileName": "a.pdf", "vendorName": "Coffee Co",
             "transactionDate": "2024-01-05", "amount": "12.50"},
            {"tempId": "t2", "fileName": "b.pdf", "error": "Could not read file"},
        ],
    })


def test_bulk_import_flow(logged_in, fake_api, flashed):
    fake_api.bulk_import.upload_and_extract.return_value = extracted_session()
    fake_api.bulk_import.confirm.return_value = BulkConfirmResult(created=1, failed=0)

    logged_in.post("/expenses/import/reset")
    response = logged_in.post("/expenses/import/files", data={
        "files": [(io.BytesIO(b"%PDF-1.4"), "a.pdf"), (io.BytesIO(b"MZ"), "virus.exe")],
    }, content_type="multipart/form-data")
    assert response.status_code == 302
    assert 'File "virus.exe" is not a supported type.' in flashed()

    logged_in.post("/expenses/import/extract")
    sent_files = fake_api.bulk_import.upload_and_extract.call_args.args[0]
    assert [f.name for f in sent_files] == ["a.pdf"]

    review_page = logged_in.get("/expenses/import")
    assert b"Coffee Co" in review_page.data
    assert b"Could not read file" in review_page.data

    logged_in.post("/expenses/import/confirm", data={
        "rows[t1][include]": "on",
        "rows[t1][amount]": "13.00",
    })
    session_id, expenses = fake_api.bulk_import.confirm.call_args.args
    assert session_id == "sess-1"
    assert [e["tempId"] for e in expenses] == ["t1"]
    assert expenses[0]["amount"] == "13.00"
    assert "Successfully created 1 expense" in flashed()

    result_page = logged_in.get("/expenses/import")
    assert b"Import complete" in result_page.data


def test_extraction_failure_returns_to_upload(logged_in, fake_api, flashed):
    fake_api.bulk_import.upload_and_extract.side_effect = ApiError("Extraction service unavailable")
    logged_in.post("/expenses/import/reset")
    logged_in.post("/expenses/import/files", data={"files": [(io.BytesIO(b"%PDF"), "a.pdf")]},
                   content_type="multipart/form-data")
    logged_in.post("/expenses/import/extract")
    assert "Extraction service unavailable" in flashed()
    page = logged_in.get("/expenses/import")
    assert b"a.pdf" in page.data
    assert b"Upload and extract" in page.data


def sign_in(client):
    with client.session_transaction() as sess:
        sess[AuthContext.SESSION_KEY] = {"access_token": "access-2", "refresh_token": "refresh-2",
                                         "user": {"id": "u1", "email": "owner@example.com"}}


def test_confirm_can_be_retried_after_session_expiry(logged_in, fake_api, flashed):
    fake_api.bulk_import.upload_and_extract.return_value = extracted_session()
    fake_api.bulk_import.confirm.side_effect = [AuthenticationError(), BulkConfirmResult(created=1, failed=0)]
    logged_in.post("/expenses/import/reset")
    logged_in.post("/expenses/import/files", data={"files": [(io.BytesIO(b"%PDF"), "a.pdf")]},
                   content_type="multipart/form-data")
    logged_in.post("/expenses/import/extract")

    response = logged_in.post("/expenses/import/confirm")
    assert response.status_code == 302
    assert "/login" in response.headers["Location"]

    sign_in(logged_in)
    logged_in.post("/expenses/import/confirm")
    assert fake_api.bulk_import.confirm.call_count == 2
    assert "This import is already being confirmed" not in flashed()
    assert "Successfully created 1 expense" in flashed()


def test_extraction_can_be_retried_after_session_expiry(logged_in, fake_api):
    fake_api.bulk_import.upload_and_extract.side_effect = [AuthenticationError(), extracted_session()]
    logged_in.post("/expenses/import/reset")
    logged_in.post("/expenses/import/files", data={"files": [(io.BytesIO(b"%PDF"), "a.pdf")]},
                   content_type="multipart/form-data")

    response = logged_in.post("/expenses/import/extract")
    assert "/login" in response.headers["Location"]

    sign_in(logged_in)
    page = logged_in.get("/expenses/import")
    assert b"Upload and extract" in page.data
    assert b"a.pdf" in page.data

    logged_in.post("/expenses/import/extract")
    assert b"Coffee Co" in logged_in.get("/expenses/import").data


# ==================== CLIENTS ====================

def test_client_form_validates_before_submit(logged_in, fake_api):
    response = logged_in.post("/clients/new", data={"company_name": "", "contact_email": "nope", "payment_terms": "-1"})
    assert response.status_code == 400
    fake_api.clients.create.assert_not_called()
    assert b"Company name is required" in response.data


def test_client_detail_rolls_up_mrr(logged_in, fake_api):
    fake_api.clients.get.return_value = Client(id="c1", company_name="Acme")
    fake_api.clients.contracts.return_value = []
    fake_api.clients.subscriptions.return_value = [
        Subscription(id="s1", name="Hosting", amount=Decimal("120"), billing_cycle="annual", status="active"),
    ]
    fake_api.clients.invoices.return_value = []
    fake_api.clients.revenue.return_value = {}
    response = logged_in.get("/clients/c1")
    assert response.status_code == 200
    assert b"$10.00" in response.data
    assert b"$120.00" in response.data


# ==================== EXPENSES ====================

def test_expense_form_validates_before_submit(logged_in, fake_api):
    response = logged_in.post("/expenses/new", data={"amount": "0", "transaction_date": "2024-01-05",
                                                      "tags": "bad tag"})
    assert response.status_code == 400
    fake_api.expenses.create.assert_not_called()
    assert b"Amount must be positive" in response.data
    assert b"may only contain lowercase letters" in response.data


def test_new_expense_is_created(logged_in, fake_api, flashed):
    fake_api.expenses.create.return_value = Expense(id="e1")
    response = logged_in.post("/expenses/new", data={
        "amount": "18.4", "transaction_date": "2024-01-05", "vendor_name": "Cafe", "tags": "Meals, travel",
        "is_billable": "on",
    })
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/expenses/e1")
    payload = fake_api.expenses.create.call_args.args[0]
    assert payload["amount"] == "18.40"
    assert payload["tags"] == ["meals", "travel"]
    assert payload["isBillable"] is True
    assert "Expense created successfully" in flashed()


def test_edit_expense_updates(logged_in, fake_api, flashed):
    fake_api.expenses.get.return_value = Expense(id="e1", amount=Decimal("10"), vendor_name="Cafe",
                                                 transaction_date=date(2024, 1, 5), tags=["meals"])
    page = logged_in.get("/expenses/e1/edit")
    assert page.status_code == 200
    assert b"Cafe" in page.data

    logged_in.post("/expenses/e1/edit", data={"amount": "12", "transaction_date": "2024-01-05", "status": "paid"})
    expense_id, payload = fake_api.expenses.update.call_args.args
    assert expense_id == "e1"
    assert payload["amount"] == "12.00"
    assert payload["status"] == "paid"
    assert "Expense updated successfully" in flashed()


def test_expense_list(logged_in, fake_api):
    fake_api.expenses.list.return_value = ListResult(items=[
        Expense(id="e1", vendor_name="Cafe", amount=Decimal("7.5"), category_name="Meals", tags=["team"]),
    ])
    response = logged_in.get("/expenses?status=pending&sort_by=amount")
    assert response.status_code == 200
    assert b"Cafe" in response.data
    assert b"$7.50" in response.data
    query = fake_api.expenses.list.call_args.args[0]
    assert query.sort_by == "amount"
    assert query.filters == {"status": "pending"}


def test_expense_dashboard(logged_in, fake_api):
    fake_api.expenses.stats.return_value = ExpenseStats.model_validate({
        "totalAmount": 400, "transactionCount": 4, "averageAmount": 100, "burnRate": 1714.29,
        "categoryBreakdown": [{"categoryName": "Travel", "total": 300}, {"categoryName": "Meals", "total": 100}],
        "dailyTrend": [{"date": "2024-01-05", "amount": 400}],
    })
    fake_api.expenses.tags.return_value = ["client-a"]
    fake_api.expenses.vendors.return_value = ["Cafe"]
    response = logged_in.get("/expenses/dashboard?period=7d")
    assert response.status_code == 200
    fake_api.expenses.stats.assert_called_once_with("7d")
    assert b"75.00%" in response.data
    assert b"$1,714.29" in response.data
    assert b"client-a" in response.data


def test_expense_dashboard_survives_api_outage(logged_in, fake_api):
    fake_api.expenses.stats.side_effect = ApiError("Backend connection error")
    response = logged_in.get("/expenses/dashboard?period=forever")
    assert response.status_code == 200
    fake_api.expenses.stats.assert_called_once_with("30d")
    assert b"unavailable" in response.data


# ==================== ATTACHMENTS ====================

def test_expense_detail_lists_attachments(logged_in, fake_api):
    fake_api.expenses.get.return_value = Expense(id="e1", vendor_name="Cafe")
    fake_api.attachments.list.return_value = [Attachment(id="a1", file_name="receipt.pdf", file_size=2048)]
    response = logged_in.get("/expenses/e1")
    assert response.status_code == 200
    fake_api.attachments.list.assert_called_once_with("expense", "e1")
    assert b"receipt.pdf" in response.data
    assert b"2.0 KB" in response.data


def test_attachment_upload(logged_in, fake_api, flashed):
    fake_api.attachments.upload.return_value = []
    response = logged_in.post("/attachments/invoice/inv-1", data={
        "files": [(io.BytesIO(b"%PDF-1.4"), "signed.pdf"), (io.BytesIO(b"MZ"), "tool.exe")],
    }, content_type="multipart/form-data")
    assert response.headers["Location"].endswith("/invoices/inv-1")
    entity_type, entity_id, files = fake_api.attachments.upload.call_args.args
    assert (entity_type, entity_id) == ("invoice", "inv-1")
    assert [f.name for f in files] == ["signed.pdf"]
    assert 'File "tool.exe" is not a supported type.' in flashed()
    assert "Uploaded 1 file" in flashed()


def test_attachment_upload_needs_a_supported_file(logged_in, fake_api, flashed):
    logged_in.post("/attachments/client/c1", data={"files": [(io.BytesIO(b"MZ"), "tool.exe")]},
                   content_type="multipart/form-data")
    fake_api.attachments.upload.assert_not_called()

    response = logged_in.post("/attachments/subscription/s1", data={}, content_type="multipart/form-data")
    assert response.status_code == 302
    assert "Attachments cannot be added to 'subscription'" in flashed()[-1]


def test_attachment_delete_returns_to_record(logged_in, fake_api, flashed):
    response = logged_in.post("/attachments/a1/delete", data={"entity_type": "contract", "entity_id": "k1"})
    fake_api.attachments.delete.assert_called_once_with("a1")
    assert response.headers["Location"].endswith("/contracts/k1")
    assert "Attachment deleted" in flashed()


def test_attachment_download_redirects(logged_in, fake_api):
    fake_api.attachments.download_url.return_value = "https://files.example.com/a1?sig=x"
    response = logged_in.get("/attachments/a1/download")
    assert response.status_code == 302
    assert response.headers["Location"] == "https://files.example.com/a1?sig=x"


# ==================== REVENUE ====================

def test_revenue_analytics(logged_in, fake_api):
    fake_api.revenue.dashboard.return_value = RevenueDashboard(mrr=Decimal("900"))
    fake_api.revenue.mrr.return_value = MRRSummary(total_mrr=Decimal("1000"), active_subscriptions=4)
    fake_api.revenue.trends.return_value = [{"date": "2024-01-05", "invoice_count": 2, "total_amount": "500"}]
    fake_api.revenue.by_category.return_value = [{"category_name": "Consulting", "total": "500"}]
    fake_api.revenue.by_client.return_value = [
        {"client_id": 1, "company_name": "Acme", "invoice_count": 2, "total_invoiced": "500", "total_paid": "200"},
    ]
    fake_api.revenue.cash_flow.return_value = [{"date": "2024-01-06", "cash_in": "200", "cash_out": "0"}]
    fake_api.revenue.vs_expenses.return_value = {"totalRevenue": 1000, "totalExpenses": 250}
    fake_api.revenue.receivables.return_value = []

    response = logged_in.get("/revenue?period=1y")
    assert response.status_code == 200
    fake_api.revenue.trends.assert_called_once_with("365d")
    _, date_to = fake_api.revenue.by_client.call_args.args
    assert date_to == date.today().isoformat()
    assert b"$12,000.00" in response.data
    assert b"75.00%" in response.data
    assert b"Acme" in response.data
    assert b"$300.00" in response.data


def test_revenue_analytics_survives_api_outage(logged_in, fake_api):
    for name in ("dashboard", "mrr", "trends", "by_category", "by_client", "cash_flow", "vs_expenses", "receivables"):
        getattr(fake_api.revenue, name).side_effect = ApiError("Backend connection error")
    response = logged_in.get("/revenue")
    assert response.status_code == 200
    assert b"Unavailable" in response.data
    assert b"Profit and loss is unavailable" in response.data
