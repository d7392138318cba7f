"""
Revenue Analytics - reporting periods, profit and loss, cash flow and revenue splits
"""
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from dateutil.relativedelta import relativedelta

from finhub.core.money import HUNDRED, ZERO, quantize_money, sum_money, to_decimal

PERIODS = OrderedDict([
    ("7d", "Last 7 days"),
    ("30d", "Last 30 days"),
    ("90d", "Last 90 days"),
    ("1y", "Last year"),
])
DEFAULT_PERIOD = "30d"

# The revenue endpoints name a year by its day count
REVENUE_API_PERIODS = {"1y": "365d"}


def normalize_period(value: Optional[str]) -> str:
    value = (value or "").strip().lower()
    return value if value in PERIODS else DEFAULT_PERIOD


def revenue_api_period(period: str) -> str:
    period = normalize_period(period)
    return REVENUE_API_PERIODS.get(period, period)


def period_range(period: str, today: Optional[date] = None) -> Tuple[date, date]:
    """First and last day covered by a reporting period, both inclusive"""
    today = today or date.today()
    period = normalize_period(period)
    if period == "1y":
        return today - relativedelta(years=1), today
    return today - timedelta(days=int(period[:-1])), today


def _pick(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in row and row[key] is not None:
            return row[key]
    return None


def _day(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


# ==================== PROFIT AND LOSS ====================

@dataclass(frozen=True)
class ProfitAndLoss:
    revenue: Decimal = ZERO
    expenses: Decimal = ZERO

    @property
    def net_income(self) -> Decimal:
        return self.revenue - self.expenses

    @property
    def profit_margin(self) -> Decimal:
        """Net income as a percentage of revenue; zero when nothing was billed"""
        if self.revenue <= ZERO:
            return ZERO
        return quantize_money(self.net_income / self.revenue * HUNDRED)


def profit_and_loss(data: Any) -> ProfitAndLoss:
    """
    Revenue against expenses for one period.

    Accepts the summary object the API returns, or a list of
    {revenue, expenses} rows which are summed.
    """
    if isinstance(data, Mapping):
        return ProfitAndLoss(
            revenue=to_decimal(_pick(data, "totalRevenue", "total_revenue", "revenue")),
            expenses=to_decimal(_pick(data, "totalExpenses", "total_expenses", "expenses")),
        )
    rows = [row for row in data or [] if isinstance(row, Mapping)]
    return ProfitAndLoss(
        revenue=sum_money(_pick(row, "revenue", "totalRevenue") for row in rows),
        expenses=sum_money(_pick(row, "expenses", "totalExpenses") for row in rows),
    )


# ==================== CASH FLOW ====================

@dataclass(frozen=True)
class CashFlowDay:
    day: date
    cash_in: Decimal
    cash_out: Decimal
    balance: Decimal

    @property
    def net(self) -> Decimal:
        return self.cash_in - self.cash_out


def cash_flow(rows: Iterable[Mapping[str, Any]]) -> List[CashFlowDay]:
    """
    One entry per day with a running balance.

    Payments and expenses arrive as separate rows for the same date; they
    are merged before the balance is carried forward.
    """
    totals: Dict[date, List[Decimal]] = {}
    for row in rows or []:
        day = _day(_pick(row, "date", "day"))
        if day is None:
            continue
        bucket = totals.setdefault(day, [ZERO, ZERO])
        bucket[0] += to_decimal(_pick(row, "cash_in", "cashIn"))
        bucket[1] += to_decimal(_pick(row, "cash_out", "cashOut"))

    days = []
    balance = ZERO
    for day in sorted(totals):
        cash_in, cash_out = totals[day]
        balance += cash_in - cash_out
        days.append(CashFlowDay(day=day, cash_in=cash_in, cash_out=cash_out, balance=balance))
    return days


# ==================== REVENUE SPLITS ====================

@dataclass(frozen=True)
class Share:
    label: str
    amount: Decimal
    percent: Decimal


def shares(rows: Iterable[Mapping[str, Any]], label_keys: Tuple[str, ...], amount_keys: Tuple[str, ...],
           default_label: str = "Uncategorized") -> List[Share]:
    """Each row's portion of the total, largest first"""
    pairs = [
        (str(_pick(row, *label_keys) or default_label), to_decimal(_pick(row, *amount_keys)))
        for row in rows or []
    ]
    total = sum_money(amount for _, amount in pairs)
    result = [
        Share(label=label, amount=amount,
              percent=quantize_money(amount / total * HUNDRED) if total > ZERO else ZERO)
        for label, amount in pairs
    ]
    return sorted(result, key=lambda s: s.amount, reverse=True)


def category_shares(rows: Iterable[Mapping[str, Any]]) -> List[Share]:
    return shares(rows, ("category_name", "categoryName"), ("total", "total_amount", "totalAmount"))


@dataclass(frozen=True)
class ClientRevenue:
    client_id: Optional[str]
    name: str
    invoice_count: int
    invoiced: Decimal
    paid: Decimal

    @property
    def outstanding(self) -> Decimal:
        return max(self.invoiced - self.paid, ZERO)


def client_revenue(rows: Iterable[Mapping[str, Any]]) -> List[ClientRevenue]:
    """Billing per client, highest invoiced first"""
    result = []
    for row in rows or []:
        client_id = _pick(row, "client_id", "clientId", "id")
        result.append(ClientRevenue(
            client_id=str(client_id) if client_id is not None else None,
            name=_pick(row, "company_name", "companyName", "client_name", "clientName") or "Unknown client",
            invoice_count=int(to_decimal(_pick(row, "invoice_count", "invoiceCount"))),
            invoiced=to_decimal(_pick(row, "total_invoiced", "totalInvoiced")),
            paid=to_decimal(_pick(row, "total_paid", "totalPaid")),
        ))
    return sorted(result, key=lambda c: c.invoiced, reverse=True)


@dataclass(frozen=True)
class TrendPoint:
    day: date
    invoice_count: int
    amount: Decimal


def revenue_trend(rows: Iterable[Mapping[str, Any]]) -> List[TrendPoint]:
    points = []
    for row in rows or []:
        day = _day(_pick(row, "date", "day"))
        if day is None:
            continue
        points.append(TrendPoint(
            day=day,
            invoice_count=int(to_decimal(_pick(row, "invoice_count", "invoiceCount"))),
            amount=to_decimal(_pick(row, "total_amount", "totalAmount", "amount")),
        ))
    return sorted(points, key=lambda p: p.day)
