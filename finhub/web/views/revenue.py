"""
Revenue Analytics Views
"""
from datetime import date

from flask import Blueprint, render_template, request, g

from finhub.schemas import MRRSummary, RevenueDashboard
from finhub.services import analytics_service
from finhub.services.receivables_service import age_receivables
from finhub.services.subscription_service import annual_value
from finhub.web import fetch_or_default, login_required

bp = Blueprint('revenue', __name__, url_prefix='/revenue')


@bp.route('')
@login_required
def index():
    """Trends, revenue splits, cash flow and profit for one period"""
    today = date.today()
    period = analytics_service.normalize_period(request.args.get('period'))
    api_period = analytics_service.revenue_api_period(period)
    date_from, date_to = analytics_service.period_range(period, today)

    summary = fetch_or_default(g.api.revenue.dashboard, api_period, default=None)
    mrr = fetch_or_default(g.api.revenue.mrr, default=None)
    trends = fetch_or_default(g.api.revenue.trends, api_period, default=[])
    categories = fetch_or_default(g.api.revenue.by_category, date_from.isoformat(), date_to.isoformat(), default=[])
    clients = fetch_or_default(g.api.revenue.by_client, date_from.isoformat(), date_to.isoformat(), default=[])
    flows = fetch_or_default(g.api.revenue.cash_flow, api_period, default=[])
    pnl = fetch_or_default(g.api.revenue.vs_expenses, api_period, default=None)
    receivables = fetch_or_default(g.api.revenue.receivables, default=[])

    monthly = mrr.total_mrr if mrr is not None else (summary.mrr if summary is not None else None)

    return render_template('revenue/index.html',
                           title='Revenue Analytics',
                           period=period,
                           periods=analytics_service.PERIODS,
                           date_from=date_from,
                           date_to=date_to,
                           summary=summary or RevenueDashboard(),
                           summary_available=summary is not None,
                           mrr=mrr or MRRSummary(),
                           monthly=monthly,
                           annual=annual_value(monthly) if monthly is not None else None,
                           trend=analytics_service.revenue_trend(trends),
                           categories=analytics_service.category_shares(categories),
                           clients=analytics_service.client_revenue(clients),
                           cash_flow=analytics_service.cash_flow(flows),
                           pnl=analytics_service.profit_and_loss(pnl) if pnl is not None else None,
                           aging=age_receivables(receivables, today))
