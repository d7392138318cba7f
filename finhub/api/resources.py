"""
Resource wrappers, one per REST resource
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar
import json
import logging

from pydantic import BaseModel

from finhub.api.client import ApiClient
from finhub.schemas import (
    Attachment, BulkConfirmResult, BulkImportSession, Client, Contract, Expense, ExpenseStats, Invoice,
    MRRSummary, Pagination, Payment, ReceivableInvoice, RevenueDashboard, Subscription
)
from finhub.services.contract_service import revenue_cache_keys
from finhub.services.list_query import ListQuery

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass
class ListResult(Generic[M]):
    items: List[M] = field(default_factory=list)
    pagination: Pagination = field(default_factory=Pagination)


def _params(query: Optional[ListQuery]) -> Optional[dict]:
    return query.to_params() if query is not None else None


def _one(data: Any, key: str, model: Type[M]) -> M:
    body = data.get(key, data) if isinstance(data, dict) else data
    return model.model_validate(body or {})


def _many(data: Any, key: str, model: Type[M]) -> List[M]:
    rows = data.get(key, []) if isinstance(data, dict) else data
    return [model.model_validate(row) for row in rows or []]


def _page(data: Any, key: str, model: Type[M]) -> ListResult[M]:
    items = _many(data, key, model)
    raw = data.get("pagination") if isinstance(data, dict) else None
    if raw:
        pagination = Pagination.model_validate(raw)
    else:
        pagination = Pagination(page=1, limit=max(len(items), 1), total_pages=1, total_items=len(items))
    return ListResult(items=items, pagination=pagination)


class Resource:
    def __init__(self, client: ApiClient):
        self.client = client


# ==================== AUTH ====================

class AuthApi(Resource):
    def login(self, email: str, password: str) -> dict:
        data = self.client.post("/auth/login", json={"email": email, "password": password})
        auth = self.client.auth
        auth.set_tokens(data.get("accessToken"), data.get("refreshToken"))
        auth.user = data.get("user") or {}
        logger.info("User %s logged in", auth.user.get("email") or email)
        return auth.user

    def logout(self) -> None:
        auth = self.client.auth
        try:
            if auth.refresh_token:
                self.client.post("/auth/logout", json={"refreshToken": auth.refresh_token})
        finally:
            auth.clear()


# ==================== CLIENTS ====================

class ClientApi(Resource):
    def list(self, query: Optional[ListQuery] = None) -> ListResult[Client]:
        return _page(self.client.get("/clients", params=_params(query)), "clients", Client)

    def get(self, client_id: Any) -> Client:
        return _one(self.client.get(f"/clients/{client_id}"), "client", Client)

    def create(self, payload: dict) -> Client:
        return _one(self.client.post("/clients", json=payload), "client", Client)

    def update(self, client_id: Any, payload: dict) -> Client:
        return _one(self.client.put(f"/clients/{client_id}", json=payload), "client", Client)

    def delete(self, client_id: Any) -> None:
        self.client.delete(f"/clients/{client_id}")

    def contracts(self, client_id: Any) -> List[Contract]:
        return _many(self.client.get(f"/clients/{client_id}/contracts"), "contracts", Contract)

    def subscriptions(self, client_id: Any) -> List[Subscription]:
        return _many(self.client.get(f"/clients/{client_id}/subscriptions"), "subscriptions", Subscription)

    def invoices(self, client_id: Any) -> List[Invoice]:
        return _many(self.client.get(f"/clients/{client_id}/invoices"), "invoices", Invoice)

    def revenue(self, client_id: Any) -> dict:
        return self.client.get(f"/clients/{client_id}/revenue")


# ==================== CONTRACTS ====================

class ContractApi(Resource):
    def list(self, query: Optional[ListQuery] = None) -> ListResult[Contract]:
        return _page(self.client.get("/contracts", params=_params(query)), "contracts", Contract)

    def get(self, contract_id: Any) -> Contract:
        return _one(self.client.get(f"/contracts/{contract_id}"), "contract", Contract)

    def create(self, payload: dict) -> Contract:
        return _one(self.client.post("/contracts", json=payload), "contract", Contract)

    def update(self, contract_id: Any, payload: dict) -> Contract:
        return _one(self.client.put(f"/contracts/{contract_id}", json=payload), "contract", Contract)

    def delete(self, contract_id: Any) -> None:
        self.client.delete(f"/contracts/{contract_id}")

    def expiring(self, days_ahead: int = 30) -> List[Contract]:
        return _many(self.client.get("/contracts/expiring", params={"daysAhead": days_ahead}), "contracts", Contract)

    def transition(self, contract: Contract, event: str, signed_date: Optional[date] = None,
                   signed_by: Optional[str] = None) -> Contract:
        """POST /contracts/:id/<event>; revenue figures are refetched afterwards"""
        body: Dict[str, Any] = {}
        if event == "sign":
            body["signedDate"] = str(signed_date or contract.signed_date)
            if signed_by:
                body["signedBy"] = signed_by
        data = self.client.post(f"/contracts/{contract.id}/{event}", json=body or None)
        self.client.invalidate(revenue_cache_keys(contract))
        return _one(data, "contract", Contract)


# ==================== SUBSCRIPTIONS ====================

class SubscriptionApi(Resource):
    def list(self, query: Optional[ListQuery] = None) -> ListResult[Subscription]:
        return _page(self.client.get("/subscriptions", params=_params(query)), "subscriptions", Subscription)

    def get(self, subscription_id: Any) -> Subscription:
        return _one(self.client.get(f"/subscriptions/{subscription_id}"), "subscription", Subscription)

    def create(self, payload: dict) -> Subscription:
        return _one(self.client.post("/subscriptions", json=payload), "subscription", Subscription)

    def update(self, subscription_id: Any, payload: dict) -> Subscription:
        return _one(self.client.put(f"/subscriptions/{subscription_id}", json=payload), "subscription", Subscription)

    def delete(self, subscription_id: Any) -> None:
        self.client.delete(f"/subscriptions/{subscription_id}")

    def stats(self) -> MRRSummary:
        """MRR and churn as reported by the server; churn arrives nested"""
        data = dict(self.client.get("/subscriptions/stats") or {})
        churn = data.pop("churn", None) or {}
        if isinstance(churn, dict):
            data.setdefault("churn_rate", churn.get("churn_rate", 0))
            data.setdefault("active_subscriptions", churn.get("total_active", 0))
        return MRRSummary.model_validate(data)

    def renewals(self, days_ahead: int = 30) -> List[Subscription]:
        data = self.client.get("/subscriptions/renewals", params={"daysAhead": days_ahead})
        return _many(data, "renewals", Subscription)

    def transition(self, subscription_id: Any, event: str, reason: Optional[str] = None) -> Subscription:
        if event == "activate":
            # Trials have no dedicated endpoint; they convert through a status update
            return self.update(subscription_id, {"status": "active"})
        body = {"reason": reason} if event == "cancel" and reason else None
        data = self.client.post(f"/subscriptions/{subscription_id}/{event}", json=body)
        return _one(data, "subscription", Subscription)


# ==================== INVOICES ====================

class InvoiceApi(Resource):
    def list(self, query: Optional[ListQuery] = None) -> ListResult[Invoice]:
        return _page(self.client.get("/invoices", params=_params(query)), "invoices", Invoice)

    def get(self, invoice_id: Any) -> Invoice:
        return _one(self.client.get(f"/invoices/{invoice_id}"), "invoice", Invoice)

    def create(self, payload: dict) -> Invoice:
        return _one(self.client.post("/invoices", json=payload), "invoice", Invoice)

    def update(self, invoice_id: Any, payload: dict) -> Invoice:
        return _one(self.client.put(f"/invoices/{invoice_id}", json=payload), "invoice", Invoice)

    def delete(self, invoice_id: Any) -> None:
        self.client.delete(f"/invoices/{invoice_id}")

    def pdf_url(self, invoice_id: Any) -> Optional[str]:
        data = self.client.get(f"/invoices/{invoice_id}/pdf")
        return data.get("url") or data.get("pdfUrl") if isinstance(data, dict) else None

    def send(self, invoice_id: Any, email_options: Optional[dict] = None) -> Invoice:
        return _one(self.client.post(f"/invoices/{invoice_id}/send", json=email_options or {}), "invoice", Invoice)

    def record_payment(self, invoice_id: Any, payload: dict) -> Invoice:
        return _one(self.client.post(f"/invoices/{invoice_id}/payment", json=payload), "invoice", Invoice)

    def send_reminder(self, invoice_id: Any) -> None:
        self.client.post(f"/invoices/{invoice_id}/reminder")

    def update_status(self, invoice_id: Any, status: str) -> Invoice:
        return _one(self.client.put(f"/invoices/{invoice_id}/status", json={"status": status}), "invoice", Invoice)

    def payments(self, invoice_id: Any) -> List[Payment]:
        return _many(self.client.get(f"/invoices/{invoice_id}/payments"), "payments", Payment)


# ==================== EXPENSES ====================

class ExpenseApi(Resource):
    def list(self, query: Optional[ListQuery] = None) -> ListResult[Expense]:
        return _page(self.client.get("/expenses", params=_params(query)), "expenses", Expense)

    def get(self, expense_id: Any) -> Expense:
        return _one(self.client.get(f"/expenses/{expense_id}"), "expense", Expense)

    def create(self, payload: dict) -> Expense:
        return _one(self.client.post("/expenses", json=payload), "expense", Expense)

    def update(self, expense_id: Any, payload: dict) -> Expense:
        return _one(self.client.put(f"/expenses/{expense_id}", json=payload), "expense", Expense)

    def delete(self, expense_id: Any) -> None:
        self.client.delete(f"/expenses/{expense_id}")

    def stats(self, period: str = "30d") -> ExpenseStats:
        return _one(self.client.get("/expenses/stats", params={"period": period}), "stats", ExpenseStats)

    def tags(self) -> List[str]:
        return self.client.get("/expenses/tags").get("tags") or []

    def vendors(self) -> List[str]:
        return self.client.get("/expenses/vendors").get("vendors") or []


class BulkImportApi(Resource):
    def upload_and_extract(self, files: Sequence[Any], options: Optional[dict] = None) -> BulkImportSession:
        """files are SelectedFile objects carrying their bytes"""
        multipart = [("files", (f.name, f.data, f.content_type)) for f in files]
        form = {"options": json.dumps(options)} if options else None
        data = self.client.post("/expenses/bulk-import", files=multipart, data=form)
        return BulkImportSession.from_api(data)

    def confirm(self, session_id: str, expenses: List[dict]) -> BulkConfirmResult:
        data = self.client.post("/expenses/bulk-confirm", json={"sessionId": session_id, "expenses": expenses})
        return BulkConfirmResult.model_validate(data or {})


# ==================== REVENUE ====================

class RevenueApi(Resource):
    def dashboard(self, period: str = "30d") -> RevenueDashboard:
        data = self.client.get("/revenue/dashboard", params={"period": period})
        return _one(data, "stats", RevenueDashboard)

    def trends(self, period: str = "90d") -> list:
        return self.client.get("/revenue/trends", params={"period": period}).get("trends") or []

    def by_category(self, date_from: Optional[str] = None, date_to: Optional[str] = None) -> list:
        params = {"dateFrom": date_from, "dateTo": date_to}
        return self.client.get("/revenue/by-category", params=params).get("categories") or []

    def by_client(self, date_from: Optional[str] = None, date_to: Optional[str] = None) -> list:
        params = {"dateFrom": date_from, "dateTo": date_to}
        return self.client.get("/revenue/by-client", params=params).get("clients") or []

    def mrr(self) -> MRRSummary:
        return MRRSummary.model_validate(self.client.get("/revenue/mrr") or {})

    def receivables(self) -> List[ReceivableInvoice]:
        return _many(self.client.get("/revenue/receivables"), "receivables", ReceivableInvoice)

    def cash_flow(self, period: str = "90d") -> list:
        return self.client.get("/revenue/cash-flow", params={"period": period}).get("cashFlow") or []

    def vs_expenses(self, period: str = "30d") -> dict:
        return self.client.get("/revenue/vs-expenses", params={"period": period})


# ==================== ATTACHMENTS ====================

class AttachmentApi(Resource):
    def upload(self, entity_type: str, entity_id: Any, files: Sequence[Any]) -> List[Attachment]:
        multipart = [("files", (f.name, f.data, f.content_type)) for f in files]
        data = self.client.post(
            "/attachments/upload", files=multipart, data={"entityType": entity_type, "entityId": str(entity_id)}
        )
        return _many(data, "attachments", Attachment)

    def list(self, entity_type: str, entity_id: Any) -> List[Attachment]:
        return _many(self.client.get(f"/attachments/{entity_type}/{entity_id}"), "attachments", Attachment)

    def download_url(self, attachment_id: Any) -> Optional[str]:
        data = self.client.get(f"/attachments/{attachment_id}/download")
        return data.get("url") or data.get("downloadUrl")

    def delete(self, attachment_id: Any) -> None:
        self.client.delete(f"/attachments/{attachment_id}")


# ==================== REFERENCE DATA ====================

class CategoryApi(Resource):
    def list(self, category_type: str = "all") -> list:
        params = {"type": category_type} if category_type != "all" else None
        return self.client.get("/categories", params=params).get("categories") or []


class PaymentMethodApi(Resource):
    def list(self) -> list:
        return self.client.get("/payment-methods").get("paymentMethods") or []


class Api:
    """Every resource over one client, bound to the current request"""

    def __init__(self, client: ApiClient):
        self.client = client
        self.auth = AuthApi(client)
        self.clients = ClientApi(client)
        self.contracts = ContractApi(client)
        self.subscriptions = SubscriptionApi(client)
        self.invoices = InvoiceApi(client)
        self.expenses = ExpenseApi(client)
        self.bulk_import = BulkImportApi(client)
        self.revenue = RevenueApi(client)
        self.attachments = AttachmentApi(client)
        self.categories = CategoryApi(client)
        self.payment_methods = PaymentMethodApi(client)
