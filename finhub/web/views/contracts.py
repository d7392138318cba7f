"""
Contract Views
"""
from datetime import date

from flask import Blueprint, render_template, request, redirect, url_for, flash, g

from finhub.core.exceptions import ApiError, ConflictError, ValidationError
from finhub.schemas import ContractStatus, ContractType
from finhub.services import contract_service
from finhub.services.contract_service import CONTRACT_LIFECYCLE
from finhub.services.list_query import ListQuery
from finhub.web import fetch_or_default, login_required
from finhub.web.views.forms import flash_errors, form_bool, form_date, form_str

bp = Blueprint('contracts', __name__, url_prefix='/contracts')


def _contract_data(form):
    return {
        'title': form_str(form, 'title') or '',
        'client_id': form_str(form, 'client_id'),
        'contract_type': form_str(form, 'contract_type'),
        'value': form_str(form, 'value'),
        'start_date': form_date(form, 'start_date'),
        'end_date': form_date(form, 'end_date'),
        'auto_renew': form_bool(form, 'auto_renew'),
        'description': form_str(form, 'description'),
        'notes': form_str(form, 'notes'),
    }


def _render_form(title, contract=None, status=200, **extra):
    clients = fetch_or_default(g.api.clients.list, default=None)
    return render_template('contracts/form.html',
                           title=title,
                           contract=contract,
                           clients=clients.items if clients else [],
                           types=list(ContractType),
                           **extra), status


@bp.route('')
@login_required
def list_contracts():
    """List contracts"""
    query = ListQuery.from_args(request.args, 'contracts')
    try:
        result = g.api.contracts.list(query)
    except ApiError as e:
        flash(e.message, 'error')
        result = None

    return render_template('contracts/list.html',
                           title='Contracts',
                           contracts=result.items if result else [],
                           pagination=result.pagination if result else None,
                           query=query,
                           statuses=list(ContractStatus),
                           display_status=contract_service.display_status,
                           today=date.today())


@bp.route('/new', methods=['GET', 'POST'])
@login_required
def new_contract():
    """Create new contract"""
    if request.method == 'GET':
        return _render_form('New Contract', client_id=request.args.get('client_id'))

    data = _contract_data(request.form)
    try:
        contract_service.validate_contract(data)
        contract = g.api.contracts.create(contract_service.build_contract_payload(data))
    except ValidationError as e:
        flash_errors(e)
        return _render_form('New Contract', status=400, form=request.form, errors=e.errors)
    except ApiError as e:
        flash(e.message, 'error')
        return _render_form('New Contract', status=400, form=request.form)

    flash('Contract created successfully', 'success')
    return redirect(url_for('contracts.view_contract', contract_id=contract.id))


@bp.route('/<contract_id>')
@login_required
def view_contract(contract_id):
    """Contract detail offering only legal lifecycle actions"""
    today = date.today()
    contract = g.api.contracts.get(contract_id)
    actions = [CONTRACT_LIFECYCLE.get(event) for event in contract_service.available_actions(contract, today)]

    return render_template('contracts/detail.html',
                           title=contract.title or 'Contract',
                           contract=contract,
                           status=contract_service.display_status(contract, today),
                           actions=actions,
                           editable=contract_service.is_editable(contract),
                           today=today,
                           attachments=fetch_or_default(g.api.attachments.list, 'contract', contract_id, default=[]))


@bp.route('/<contract_id>/edit', methods=['GET', 'POST'])
@login_required
def edit_contract(contract_id):
    """Edit contract while it is still open"""
    contract = g.api.contracts.get(contract_id)
    if not contract_service.is_editable(contract):
        flash(f"A {contract.status.value.replace('_', ' ')} contract can no longer be edited", 'error')
        return redirect(url_for('contracts.view_contract', contract_id=contract_id))

    if request.method == 'GET':
        return _render_form('Edit Contract', contract=contract)

    data = _contract_data(request.form)
    try:
        contract_service.validate_contract(data, existing=contract)
        g.api.contracts.update(contract_id, contract_service.build_contract_payload(data))
    except ValidationError as e:
        flash_errors(e)
        return _render_form('Edit Contract', contract=contract, status=400, form=request.form, errors=e.errors)
    except (ConflictError, ApiError) as e:
        flash(e.message, 'error')
        return _render_form('Edit Contract', contract=contract, status=400, form=request.form)

    flash('Contract updated successfully', 'success')
    return redirect(url_for('contracts.view_contract', contract_id=contract_id))


@bp.route('/<contract_id>/<event>', methods=['POST'])
@login_required
def transition(contract_id, event):
    """Apply a lifecycle action (sign, activate, complete, cancel)"""
    contract = g.api.contracts.get(contract_id)
    signed_date = form_date(request.form, 'signed_date')

    if contract_service.is_noop(contract, event):
        flash(f"Contract is already {contract.status.value.replace('_', ' ')}", 'info')
        return redirect(url_for('contracts.view_contract', contract_id=contract_id))

    try:
        if not CONTRACT_LIFECYCLE.get(event).user_action:
            raise ConflictError(f"Contracts cannot be marked {event} by hand")
        contract_service.check_transition(contract, event, signed_date)
        g.api.contracts.transition(contract, event, signed_date=signed_date,
                                   signed_by=form_str(request.form, 'signed_by'))
    except ValidationError as e:
        flash_errors(e)
    except (ConflictError, ApiError) as e:
        flash(e.message, 'error')
    else:
        flash(f"Contract {CONTRACT_LIFECYCLE.target_of(event).replace('_', ' ')}", 'success')

    return redirect(url_for('contracts.view_contract', contract_id=contract_id))


@bp.route('/<contract_id>/delete', methods=['POST'])
@login_required
def delete_contract(contract_id):
    """Delete contract"""
    try:
        g.api.contracts.delete(contract_id)
    except ApiError as e:
        flash(e.message, 'error')
        return redirect(url_for('contracts.view_contract', contract_id=contract_id))

    flash('Contract deleted successfully', 'success')
    return redirect(url_for('contracts.list_contracts'))
