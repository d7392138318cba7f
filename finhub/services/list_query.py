"""
Filter / sort / paginate helpers for list pages
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence

from finhub.core.config import settings

SORT_ORDERS = ("asc", "desc")

# Sortable columns per resource, first entry is the default
SORT_FIELDS: Dict[str, Sequence[str]] = {
    "clients": ("company_name", "created_at", "status"),
    "contracts": ("start_date", "end_date", "title", "value", "status"),
    "subscriptions": ("next_billing_date", "name", "amount", "status"),
    "invoices": ("issue_date", "due_date", "invoice_number", "total_amount", "status"),
    "expenses": ("transaction_date", "amount", "vendor_name"),
}

# Query args forwarded as-is to the list endpoint when non-empty
FILTER_FIELDS: Dict[str, Sequence[str]] = {
    "clients": ("search", "status"),
    "contracts": ("search", "status", "clientId", "type"),
    "subscriptions": ("search", "status", "clientId", "billingCycle"),
    "invoices": ("search", "status", "clientId", "startDate", "endDate"),
    "expenses": ("search", "status", "categoryId", "startDate", "endDate"),
}


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class ListQuery:
    page: int = 1
    limit: int = 20
    sort_by: Optional[str] = None
    sort_order: str = "desc"
    filters: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_args(cls, args: Mapping[str, Any], resource: str) -> "ListQuery":
        """Build a query from request args, clamping anything out of range"""
        max_limit = settings.MAX_PAGE_SIZE
        page = max(1, _to_int(args.get("page"), 1))
        limit = _to_int(args.get("limit"), settings.DEFAULT_PAGE_SIZE)
        limit = min(max(1, limit), max_limit)

        sortable = SORT_FIELDS.get(resource, ())
        sort_by = args.get("sort_by") or args.get("sortBy")
        if sort_by not in sortable:
            sort_by = sortable[0] if sortable else None
        sort_order = (args.get("sort_order") or args.get("sortOrder") or "desc").lower()
        if sort_order not in SORT_ORDERS:
            sort_order = "desc"

        filters = {}
        for name in FILTER_FIELDS.get(resource, ()):
            value = args.get(name)
            if value is not None and str(value).strip():
                filters[name] = str(value).strip()

        return cls(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order, filters=filters)

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page": self.page, "limit": self.limit}
        if self.sort_by:
            params["sortBy"] = self.sort_by
            params["sortOrder"] = self.sort_order
        params.update(self.filters)
        return params

    def with_page(self, page: int) -> Dict[str, Any]:
        """Args for a link to another page of the same listing"""
        params = self.to_params()
        params["page"] = max(1, page)
        return params

    def toggled(self, column: str) -> Dict[str, Any]:
        """Args for a header link sorting by column, flipping order on the active column"""
        params = self.to_params()
        order = "asc" if column == self.sort_by and self.sort_order == "desc" else "desc"
        params.update({"sortBy": column, "sortOrder": order, "page": 1})
        return params

