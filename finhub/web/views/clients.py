"""
Client Views
"""
from datetime import date

from flask import Blueprint, render_template, request, redirect, url_for, flash, g

from finhub.core.exceptions import ApiError, ValidationError
from finhub.schemas import ClientStatus
from finhub.services.list_query import ListQuery
from finhub.services.receivables_service import age_receivables
from finhub.services.subscription_service import annual_value, total_mrr
from finhub.web import fetch_or_default, login_required
from finhub.web.views.forms import flash_errors, form_str

bp = Blueprint('clients', __name__, url_prefix='/clients')


def _client_data(form):
    return {
        'company_name': form_str(form, 'company_name') or '',
        'contact_name': form_str(form, 'contact_name'),
        'contact_email': form_str(form, 'contact_email'),
        'contact_phone': form_str(form, 'contact_phone'),
        'address': form_str(form, 'address'),
        'paymentTerms': form_str(form, 'payment_terms') or 30,
        'status': form_str(form, 'status') or ClientStatus.ACTIVE.value,
        'notes': form_str(form, 'notes'),
    }


def _validate_client(data):
    errors = {}
    if not data['company_name']:
        errors['company_name'] = ['Company name is required']
    email = data.get('contact_email')
    if email and '@' not in email:
        errors['contact_email'] = ['Enter a valid email address']
    try:
        if int(data['paymentTerms']) < 0:
            errors['payment_terms'] = ['Payment terms cannot be negative']
    except (TypeError, ValueError):
        errors['payment_terms'] = ['Payment terms must be a number of days']
    if data['status'] not in {s.value for s in ClientStatus}:
        errors['status'] = ['Unknown status']
    if errors:
        raise ValidationError(errors)


@bp.route('')
@login_required
def list_clients():
    """List clients"""
    query = ListQuery.from_args(request.args, 'clients')
    try:
        result = g.api.clients.list(query)
    except ApiError as e:
        flash(e.message, 'error')
        result = None

    return render_template('clients/list.html',
                           title='Clients',
                           clients=result.items if result else [],
                           pagination=result.pagination if result else None,
                           query=query,
                           statuses=list(ClientStatus))


@bp.route('/new', methods=['GET', 'POST'])
@login_required
def new_client():
    """Create new client"""
    if request.method == 'GET':
        return render_template('clients/form.html', title='New Client', client=None,
                               statuses=list(ClientStatus))

    data = _client_data(request.form)
    try:
        _validate_client(data)
        client = g.api.clients.create(data)
    except ValidationError as e:
        flash_errors(e)
        return render_template('clients/form.html', title='New Client', client=None, form=request.form,
                               errors=e.errors, statuses=list(ClientStatus)), 400
    except ApiError as e:
        flash(e.message, 'error')
        return render_template('clients/form.html', title='New Client', client=None, form=request.form,
                               statuses=list(ClientStatus)), 400

    flash('Client created successfully', 'success')
    return redirect(url_for('clients.view_client', client_id=client.id))


@bp.route('/<client_id>')
@login_required
def view_client(client_id):
    """Client detail with contracts, subscriptions, invoices and aging"""
    today = date.today()
    client = g.api.clients.get(client_id)
    contracts = fetch_or_default(g.api.clients.contracts, client_id, default=[])
    subscriptions = fetch_or_default(g.api.clients.subscriptions, client_id, default=[])
    invoices = fetch_or_default(g.api.clients.invoices, client_id, default=[])
    revenue = fetch_or_default(g.api.clients.revenue, client_id, default={})

    mrr = total_mrr(subscriptions, today)
    return render_template('clients/detail.html',
                           title=client.company_name or 'Client',
                           client=client,
                           contracts=contracts,
                           subscriptions=subscriptions,
                           invoices=invoices,
                           revenue=revenue,
                           mrr=mrr,
                           arr=annual_value(mrr),
                           aging=age_receivables(invoices, today),
                           attachments=fetch_or_default(g.api.attachments.list, 'client', client_id, default=[]))


@bp.route('/<client_id>/edit', methods=['GET', 'POST'])
@login_required
def edit_client(client_id):
    """Edit client"""
    client = g.api.clients.get(client_id)
    if request.method == 'GET':
        return render_template('clients/form.html', title='Edit Client', client=client,
                               statuses=list(ClientStatus))

    data = _client_data(request.form)
    try:
        _validate_client(data)
        g.api.clients.update(client_id, data)
    except ValidationError as e:
        flash_errors(e)
        return render_template('clients/form.html', title='Edit Client', client=client, form=request.form,
                               errors=e.errors, statuses=list(ClientStatus)), 400
    except ApiError as e:
        flash(e.message, 'error')
        return render_template('clients/form.html', title='Edit Client', client=client, form=request.form,
                               statuses=list(ClientStatus)), 400

    flash('Client updated successfully', 'success')
    return redirect(url_for('clients.view_client', client_id=client_id))


@bp.route('/<client_id>/delete', methods=['POST'])
@login_required
def delete_client(client_id):
    """Delete client"""
    try:
        g.api.clients.delete(client_id)
    except ApiError as e:
        flash(e.message, 'error')
        return redirect(url_for('clients.view_client', client_id=client_id))

    flash('Client deleted successfully', 'success')
    return redirect(url_for('clients.list_clients'))
