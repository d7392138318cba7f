"""
Dashboard Views - recurring revenue and receivables
"""
from datetime import date

from flask import Blueprint, render_template, make_response, redirect, url_for, flash, g

from finhub.core.exceptions import ApiError
from finhub.core.money import ZERO
from finhub.schemas import MRRSummary
from finhub.services.receivables_service import age_by_client, age_receivables, export_aging_workbook
from finhub.services.subscription_service import annual_value, upcoming_renewals
from finhub.services.contract_service import expiring_within
from finhub.web import fetch_or_default, login_required

bp = Blueprint('dashboard', __name__, url_prefix='/dashboard')


@bp.route('')
@login_required
def index():
    """Main dashboard"""
    today = date.today()
    summary = fetch_or_default(g.api.subscriptions.stats, default=None)
    receivables = fetch_or_default(g.api.revenue.receivables, default=[])
    renewals = fetch_or_default(g.api.subscriptions.renewals, 30, default=[])
    expiring = fetch_or_default(g.api.contracts.expiring, 30, default=[])

    mrr = summary.total_mrr if summary is not None else ZERO
    aging = age_receivables(receivables, today)

    return render_template('dashboard/index.html',
                           title='Dashboard',
                           summary=summary or MRRSummary(),
                           summary_available=summary is not None,
                           mrr=mrr,
                           arr=annual_value(mrr),
                           aging=aging,
                           aging_by_client=age_by_client(receivables, today),
                           renewals=upcoming_renewals(renewals, 30, today),
                           expiring=expiring_within(expiring, 30, today))


@bp.route('/receivables.xlsx')
@login_required
def export_receivables():
    """Download the AR aging report as a spreadsheet"""
    today = date.today()
    try:
        receivables = g.api.revenue.receivables()
    except ApiError as e:
        flash(e.message, 'error')
        return redirect(url_for('dashboard.index'))
    report = age_receivables(receivables, today)
    output = export_aging_workbook(report, as_of=today)

    response = make_response(output.getvalue())
    response.headers['Content-Type'] = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    response.headers['Content-Disposition'] = f'attachment; filename=ar_aging_{today.isoformat()}.xlsx'
    return response
