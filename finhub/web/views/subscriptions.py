"""
Subscription Views
"""
from datetime import date

from flask import Blueprint, render_template, request, redirect, url_for, flash, g

from finhub.core.exceptions import ApiError, ConflictError, ValidationError
from finhub.schemas import BillingCycle, SubscriptionStatus
from finhub.services import subscription_service
from finhub.services.list_query import ListQuery
from finhub.services.subscription_service import SUBSCRIPTION_LIFECYCLE
from finhub.web import fetch_or_default, login_required
from finhub.web.views.forms import flash_errors, form_bool, form_date, form_str

bp = Blueprint('subscriptions', __name__, url_prefix='/subscriptions')


def _subscription_data(form):
    return {
        'name': form_str(form, 'name') or '',
        'client_id': form_str(form, 'client_id'),
        'contract_id': form_str(form, 'contract_id'),
        'amount': form_str(form, 'amount'),
        'billing_cycle': form_str(form, 'billing_cycle'),
        'start_date': form_date(form, 'start_date'),
        'auto_renew': form_bool(form, 'auto_renew'),
        'description': form_str(form, 'description'),
    }


def _render_form(title, subscription=None, status=200, **extra):
    clients = fetch_or_default(g.api.clients.list, default=None)
    contracts = fetch_or_default(g.api.contracts.list, default=None)
    return render_template('subscriptions/form.html',
                           title=title,
                           subscription=subscription,
                           clients=clients.items if clients else [],
                           contracts=contracts.items if contracts else [],
                           cycles=list(BillingCycle),
                           **extra), status


@bp.route('')
@login_required
def list_subscriptions():
    """List subscriptions with their monthly value"""
    today = date.today()
    query = ListQuery.from_args(request.args, 'subscriptions')
    try:
        result = g.api.subscriptions.list(query)
    except ApiError as e:
        flash(e.message, 'error')
        result = None

    subscriptions = result.items if result else []
    return render_template('subscriptions/list.html',
                           title='Subscriptions',
                           subscriptions=subscriptions,
                           pagination=result.pagination if result else None,
                           query=query,
                           statuses=list(SubscriptionStatus),
                           monthly_value=subscription_service.subscription_mrr,
                           page_mrr=subscription_service.total_mrr(subscriptions, today),
                           today=today)


@bp.route('/new', methods=['GET', 'POST'])
@login_required
def new_subscription():
    """Create new subscription"""
    if request.method == 'GET':
        return _render_form('New Subscription', client_id=request.args.get('client_id'))

    data = _subscription_data(request.form)
    try:
        subscription_service.validate_subscription(data)
        subscription = g.api.subscriptions.create(subscription_service.build_subscription_payload(data))
    except ValidationError as e:
        flash_errors(e)
        return _render_form('New Subscription', status=400, form=request.form, errors=e.errors)
    except ApiError as e:
        flash(e.message, 'error')
        return _render_form('New Subscription', status=400, form=request.form)

    flash('Subscription created successfully', 'success')
    return redirect(url_for('subscriptions.view_subscription', subscription_id=subscription.id))


@bp.route('/<subscription_id>')
@login_required
def view_subscription(subscription_id):
    """Subscription detail with MRR/ARR contribution"""
    today = date.today()
    subscription = g.api.subscriptions.get(subscription_id)
    mrr = subscription_service.subscription_mrr(subscription, today)
    actions = [SUBSCRIPTION_LIFECYCLE.get(e) for e in subscription_service.available_actions(subscription)]

    return render_template('subscriptions/detail.html',
                           title=subscription.name or 'Subscription',
                           subscription=subscription,
                           mrr=mrr,
                           arr=subscription_service.annual_value(mrr),
                           normalized=subscription_service.monthly_value(subscription.amount,
                                                                         subscription.billing_cycle),
                           actions=actions,
                           editable=subscription_service.is_editable(subscription))


@bp.route('/<subscription_id>/edit', methods=['GET', 'POST'])
@login_required
def edit_subscription(subscription_id):
    """Edit subscription terms until it is cancelled or expired"""
    subscription = g.api.subscriptions.get(subscription_id)
    if not subscription_service.is_editable(subscription):
        flash(f"A {subscription.status.value.replace('_', ' ')} subscription can no longer be edited", 'error')
        return redirect(url_for('subscriptions.view_subscription', subscription_id=subscription_id))

    if request.method == 'GET':
        return _render_form('Edit Subscription', subscription=subscription)

    data = _subscription_data(request.form)
    try:
        subscription_service.validate_subscription(data)
        g.api.subscriptions.update(subscription_id,
                                   subscription_service.build_subscription_payload(data, existing=subscription))
    except ValidationError as e:
        flash_errors(e)
        return _render_form('Edit Subscription', subscription=subscription, status=400, form=request.form,
                            errors=e.errors)
    except ApiError as e:
        flash(e.message, 'error')
        return _render_form('Edit Subscription', subscription=subscription, status=400, form=request.form)

    flash('Subscription updated successfully', 'success')
    return redirect(url_for('subscriptions.view_subscription', subscription_id=subscription_id))


@bp.route('/<subscription_id>/<event>', methods=['POST'])
@login_required
def transition(subscription_id, event):
    """Apply a lifecycle action (activate, pause, resume, cancel)"""
    subscription = g.api.subscriptions.get(subscription_id)
    try:
        if not SUBSCRIPTION_LIFECYCLE.get(event).user_action:
            raise ConflictError(f"Subscriptions cannot be marked {event.replace('_', ' ')} by hand")
        updated = subscription_service.apply_event(subscription, event)
        if updated.status == subscription.status:
            flash(f"Subscription is already {subscription.status.value.replace('_', ' ')}", 'info')
        else:
            g.api.subscriptions.transition(subscription_id, event, reason=form_str(request.form, 'reason'))
            flash(f"Subscription {updated.status.value.replace('_', ' ')}", 'success')
    except (ConflictError, ApiError) as e:
        flash(e.message, 'error')

    return redirect(url_for('subscriptions.view_subscription', subscription_id=subscription_id))


@bp.route('/<subscription_id>/delete', methods=['POST'])
@login_required
def delete_subscription(subscription_id):
    """Delete subscription"""
    try:
        g.api.subscriptions.delete(subscription_id)
    except ApiError as e:
        flash(e.message, 'error')
        return redirect(url_for('subscriptions.view_subscription', subscription_id=subscription_id))

    flash('Subscription deleted successfully', 'success')
    return redirect(url_for('subscriptions.list_subscriptions'))
