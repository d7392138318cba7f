"""
Attachment Views - files stored against expenses, invoices, clients and contracts
"""
from flask import Blueprint, request, redirect, url_for, flash, g

from finhub.core.exceptions import ApiError, ValidationError
from finhub.services.attachment_service import check_entity_type, prefilter_attachments
from finhub.web import login_required
from finhub.web.views.forms import flash_errors, form_str, uploaded_files

bp = Blueprint('attachments', __name__, url_prefix='/attachments')

DETAIL_ENDPOINTS = {
    'expense': ('expenses.view_expense', 'expense_id'),
    'invoice': ('invoices.view_invoice', 'invoice_id'),
    'client': ('clients.view_client', 'client_id'),
    'contract': ('contracts.view_contract', 'contract_id'),
}


def _back_to(entity_type, entity_id):
    endpoint, arg = DETAIL_ENDPOINTS[entity_type]
    return redirect(url_for(endpoint, **{arg: entity_id}))


@bp.route('/<entity_type>/<entity_id>', methods=['POST'])
@login_required
def upload(entity_type, entity_id):
    """Attach files to a record"""
    try:
        entity_type = check_entity_type(entity_type)
    except ValidationError as e:
        flash_errors(e)
        return redirect(url_for('dashboard.index'))

    selection = prefilter_attachments(uploaded_files(request.files.getlist('files')))
    for message in selection.messages:
        flash(message, 'error' if message in selection.rejected else 'warning')
    if not selection.files:
        if not selection.messages:
            flash('Please choose at least one file', 'error')
        return _back_to(entity_type, entity_id)

    try:
        stored = g.api.attachments.upload(entity_type, entity_id, selection.files)
    except ApiError as e:
        flash(e.message, 'error')
    else:
        count = len(stored) or len(selection.files)
        flash(f"Uploaded {count} file{'' if count == 1 else 's'}", 'success')
    return _back_to(entity_type, entity_id)


@bp.route('/<attachment_id>/download')
@login_required
def download(attachment_id):
    """Redirect to a short-lived download link"""
    try:
        url = g.api.attachments.download_url(attachment_id)
    except ApiError as e:
        flash(e.message, 'error')
        return redirect(request.referrer or url_for('dashboard.index'))
    if not url:
        flash('This file is not available for download', 'error')
        return redirect(request.referrer or url_for('dashboard.index'))
    return redirect(url)


@bp.route('/<attachment_id>/delete', methods=['POST'])
@login_required
def delete(attachment_id):
    """Remove an attachment and return to the record it belonged to"""
    entity_type = form_str(request.form, 'entity_type')
    entity_id = form_str(request.form, 'entity_id')
    try:
        g.api.attachments.delete(attachment_id)
    except ApiError as e:
        flash(e.message, 'error')
    else:
        flash('Attachment deleted', 'success')

    if entity_type in DETAIL_ENDPOINTS and entity_id:
        return _back_to(entity_type, entity_id)
    return redirect(url_for('dashboard.index'))
