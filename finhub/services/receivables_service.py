"""
Receivables Aggregator - accounts receivable aging
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional

import openpyxl
from openpyxl.styles import Font, PatternFill, Border, Side

from finhub.core.money import ZERO, quantize_money
from finhub.schemas import Invoice, InvoiceStatus, ReceivableInvoice
from finhub.services.invoice_service import invoice_balance

BUCKET_0_30 = "0-30"
BUCKET_31_60 = "31-60"
BUCKET_60_PLUS = "60+"
BUCKETS = (BUCKET_0_30, BUCKET_31_60, BUCKET_60_PLUS)

EXCLUDED_STATES = frozenset({InvoiceStatus.CANCELLED.value, InvoiceStatus.VOID.value})

UNKNOWN_CLIENT = "Unknown client"


@dataclass(frozen=True)
class ReceivableRow:
    invoice_id: Optional[str]
    invoice_number: Optional[str]
    client_id: Optional[str]
    client_name: str
    due_date: Optional[date]
    balance_due: Decimal
    days_overdue: int
    bucket: str


@dataclass
class AgingReport:
    rows: List[ReceivableRow] = field(default_factory=list)
    buckets: Dict[str, Decimal] = field(default_factory=lambda: OrderedDict((b, ZERO) for b in BUCKETS))
    total: Decimal = ZERO
    label: Optional[str] = None

    def add(self, row: ReceivableRow) -> None:
        self.rows.append(row)
        self.buckets[row.bucket] += row.balance_due
        self.total += row.balance_due

    @property
    def count(self) -> int:
        return len(self.rows)

    def bucket_count(self, bucket: str) -> int:
        return sum(1 for row in self.rows if row.bucket == bucket)

    def rounded_buckets(self) -> Dict[str, Decimal]:
        return OrderedDict((name, quantize_money(amount)) for name, amount in self.buckets.items())


def days_overdue(due_date: Optional[date], today: Optional[date] = None) -> int:
    """Whole days past due; 0 when not yet due or when there is no due date"""
    if due_date is None:
        return 0
    today = today or date.today()
    return max(0, (today - due_date).days)


def aging_bucket(days: int) -> str:
    if days <= 30:
        return BUCKET_0_30
    if days <= 60:
        return BUCKET_31_60
    return BUCKET_60_PLUS


def _row_from(invoice: Any, today: date) -> Optional[ReceivableRow]:
    if isinstance(invoice, Invoice):
        balance = invoice_balance(invoice)
        invoice_id = invoice.id
    elif isinstance(invoice, ReceivableInvoice):
        balance = invoice.balance_due
        invoice_id = invoice.invoice_id
    else:
        raise TypeError(f"Cannot age {type(invoice).__name__}")

    if invoice.status.value in EXCLUDED_STATES or balance <= ZERO:
        return None

    days = days_overdue(invoice.due_date, today)
    return ReceivableRow(
        invoice_id=invoice_id,
        invoice_number=invoice.invoice_number,
        client_id=invoice.client_id,
        client_name=invoice.client_name or UNKNOWN_CLIENT,
        due_date=invoice.due_date,
        balance_due=balance,
        days_overdue=days,
        bucket=aging_bucket(days),
    )


def age_receivables(invoices: Iterable[Any], today: Optional[date] = None) -> AgingReport:
    """
    Bucket every open balance by days overdue.

    Each included invoice lands in exactly one bucket, so the bucket totals
    always add up to the grand total.
    """
    today = today or date.today()
    report = AgingReport()
    for invoice in invoices:
        row = _row_from(invoice, today)
        if row is not None:
            report.add(row)
    report.rows.sort(key=lambda r: (-r.days_overdue, r.invoice_number or ""))
    return report


def age_by_client(invoices: Iterable[Any], today: Optional[date] = None) -> Dict[str, AgingReport]:
    """
    Aging report per client, largest outstanding total first.

    Keyed by client id so two clients sharing a name stay apart; the
    report label carries the display name.
    """
    overall = age_receivables(invoices, today)
    per_client: Dict[str, AgingReport] = {}
    for row in overall.rows:
        key = row.client_id or f"name:{row.client_name}"
        per_client.setdefault(key, AgingReport(label=row.client_name)).add(row)
    return OrderedDict(sorted(per_client.items(), key=lambda item: item[1].total, reverse=True))


def export_aging_workbook(report: AgingReport, title: str = "Accounts Receivable Aging", as_of: Optional[date] = None) -> BytesIO:
    """Write the aging report to an in-memory .xlsx file"""
    as_of = as_of or date.today()
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "AR Aging"

    title_font = Font(bold=True, size=16)
    currency_format = '#,##0.00'
    header_fill = PatternFill(start_color="4F81BD", end_color="4F81BD", fill_type="solid")
    header_font_white = Font(bold=True, color="FFFFFF")
    total_fill = PatternFill(start_color="E2EFDA", end_color="E2EFDA", fill_type="solid")
    thin_border = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin')
    )

    ws['A1'] = title
    ws['A1'].font = title_font
    ws.merge_cells('A1:F1')
    ws['A2'] = f"As of {as_of.isoformat()}"
    ws.merge_cells('A2:F2')

    row = 4
    headers = ['Invoice', 'Client', 'Due Date', 'Days Overdue', 'Age', 'Balance Due']
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=row, column=col, value=header)
        cell.font = header_font_white
        cell.fill = header_fill
        cell.border = thin_border
    row += 1

    for item in report.rows:
        ws.cell(row=row, column=1, value=item.invoice_number).border = thin_border
        ws.cell(row=row, column=2, value=item.client_name).border = thin_border
        ws.cell(row=row, column=3, value=item.due_date.isoformat() if item.due_date else "").border = thin_border
        ws.cell(row=row, column=4, value=item.days_overdue).border = thin_border
        ws.cell(row=row, column=5, value=f"{item.bucket} days").border = thin_border
        amount = ws.cell(row=row, column=6, value=float(quantize_money(item.balance_due)))
        amount.number_format = currency_format
        amount.border = thin_border
        row += 1

    row += 1
    for bucket, amount in report.rounded_buckets().items():
        ws.cell(row=row, column=5, value=f"{bucket} days").font = Font(bold=True)
        cell = ws.cell(row=row, column=6, value=float(amount))
        cell.number_format = currency_format
        row += 1

    ws.cell(row=row, column=5, value="Total Outstanding").font = Font(bold=True)
    total_cell = ws.cell(row=row, column=6, value=float(quantize_money(report.total)))
    total_cell.number_format = currency_format
    total_cell.fill = total_fill
    total_cell.font = Font(bold=True)

    for col, width in zip("ABCDEF", (16, 30, 12, 14, 12, 16)):
        ws.column_dimensions[col].width = width

    output = BytesIO()
    wb.save(output)
    output.seek(0)
    return output
