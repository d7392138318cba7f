"""
Invoice Views
"""
from datetime import date

from flask import Blueprint, render_template, request, redirect, url_for, flash, jsonify, g

from finhub.core.exceptions import ApiError, ConflictError, ValidationError
from finhub.schemas import InvoiceStatus, Payment, PaymentMethod
from finhub.services import invoice_service
from finhub.services.invoice_service import INVOICE_LIFECYCLE, payment_guard
from finhub.services.list_query import ListQuery
from finhub.web import fetch_or_default, login_required
from finhub.web.views.forms import flash_errors, form_date, form_str

bp = Blueprint('invoices', __name__, url_prefix='/invoices')


def _invoice_data(form):
    return {
        'client_id': form_str(form, 'client_id'),
        'issue_date': form_date(form, 'issue_date'),
        'due_date': form_date(form, 'due_date'),
        'tax_rate': form_str(form, 'tax_rate') or 0,
        'discount_amount': form_str(form, 'discount_amount') or 0,
        'payment_terms': form_str(form, 'payment_terms'),
        'notes': form_str(form, 'notes'),
    }


def _render_form(title, invoice=None, status=200, **extra):
    clients = fetch_or_default(g.api.clients.list, default=None)
    return render_template('invoices/form.html',
                           title=title,
                           invoice=invoice,
                           clients=clients.items if clients else [],
                           today=date.today().isoformat(),
                           **extra), status


def _with_payments(invoice):
    """Attach the payment list when the detail payload did not include it"""
    if invoice.payments:
        return invoice
    payments = fetch_or_default(g.api.invoices.payments, invoice.id, default=[])
    return invoice.model_copy(update={'payments': payments}) if payments else invoice


# ==================== LIST / CREATE ====================

@bp.route('')
@login_required
def list_invoices():
    """List invoices"""
    query = ListQuery.from_args(request.args, 'invoices')
    try:
        result = g.api.invoices.list(query)
    except ApiError as e:
        flash(e.message, 'error')
        result = None

    return render_template('invoices/list.html',
                           title='Invoices',
                           invoices=result.items if result else [],
                           pagination=result.pagination if result else None,
                           query=query,
                           statuses=list(InvoiceStatus),
                           effective_status=invoice_service.effective_status,
                           balance=invoice_service.invoice_balance,
                           today=date.today())


@bp.route('/new', methods=['GET', 'POST'])
@login_required
def new_invoice():
    """Create new invoice"""
    if request.method == 'GET':
        return _render_form('New Invoice', client_id=request.args.get('client_id'))

    data = _invoice_data(request.form)
    items = invoice_service.parse_line_items(request.form)
    totals = invoice_service.calculate_totals(items, data['tax_rate'], data['discount_amount'])
    try:
        invoice_service.validate_invoice(data, items)
        invoice = g.api.invoices.create(invoice_service.build_invoice_payload(data, items))
    except ValidationError as e:
        flash_errors(e)
        return _render_form('New Invoice', status=400, form=request.form, items=items,
                            totals=totals.rounded(), errors=e.errors)
    except ApiError as e:
        flash(e.message, 'error')
        return _render_form('New Invoice', status=400, form=request.form, items=items, totals=totals.rounded())

    flash('Invoice created successfully', 'success')
    return redirect(url_for('invoices.view_invoice', invoice_id=invoice.id))


@bp.route('/preview', methods=['POST'])
@login_required
def preview_totals():
    """Live totals for the invoice form"""
    payload = request.get_json(silent=True)
    source = payload if isinstance(payload, dict) else request.form
    if isinstance(source.get('items'), list):
        items = source['items']
    else:
        items = invoice_service.parse_line_items(source)
    totals = invoice_service.calculate_totals(items, source.get('tax_rate'), source.get('discount_amount'))
    return jsonify(totals.as_dict())


# ==================== DETAIL ====================

@bp.route('/<invoice_id>')
@login_required
def view_invoice(invoice_id):
    """Invoice detail with balance, payments and legal actions"""
    today = date.today()
    invoice = _with_payments(g.api.invoices.get(invoice_id))
    actions = invoice_service.available_actions(invoice, today)

    return render_template('invoices/detail.html',
                           title=invoice.invoice_number or 'Invoice',
                           invoice=invoice,
                           totals=invoice_service.invoice_totals(invoice).rounded(),
                           paid=invoice_service.invoice_paid_amount(invoice),
                           balance=invoice_service.invoice_balance(invoice),
                           status=invoice_service.effective_status(invoice, today),
                           actions=actions,
                           transitions=[t for t in INVOICE_LIFECYCLE.available(invoice.status)],
                           statuses=list(InvoiceStatus),
                           payment_methods=list(PaymentMethod),
                           payment_busy=payment_guard.is_busy(invoice_id),
                           today=today.isoformat(),
                           attachments=fetch_or_default(g.api.attachments.list, 'invoice', invoice_id, default=[]))


@bp.route('/<invoice_id>/edit', methods=['GET', 'POST'])
@login_required
def edit_invoice(invoice_id):
    """Edit a draft invoice"""
    invoice = g.api.invoices.get(invoice_id)
    if invoice.status != InvoiceStatus.DRAFT:
        flash('Only draft invoices can be edited', 'error')
        return redirect(url_for('invoices.view_invoice', invoice_id=invoice_id))

    if request.method == 'GET':
        return _render_form('Edit Invoice', invoice=invoice, items=invoice.items,
                            totals=invoice_service.invoice_totals(invoice).rounded())

    data = _invoice_data(request.form)
    items = invoice_service.parse_line_items(request.form)
    try:
        invoice_service.validate_invoice(data, items)
        g.api.invoices.update(invoice_id, invoice_service.build_invoice_payload(data, items))
    except ValidationError as e:
        flash_errors(e)
        return _render_form('Edit Invoice', invoice=invoice, status=400, form=request.form, items=items,
                            errors=e.errors)
    except ApiError as e:
        flash(e.message, 'error')
        return _render_form('Edit Invoice', invoice=invoice, status=400, form=request.form, items=items)

    flash('Invoice updated successfully', 'success')
    return redirect(url_for('invoices.view_invoice', invoice_id=invoice_id))


# ==================== PAYMENTS ====================

@bp.route('/<invoice_id>/payment', methods=['POST'])
@login_required
def record_payment(invoice_id):
    """Record a payment; one submission per invoice at a time"""
    form = request.form
    payment_date = form_date(form, 'payment_date')
    try:
        with payment_guard.submitting(invoice_id):
            # Balance is read inside the guard so two submissions never share it
            invoice = _with_payments(g.api.invoices.get(invoice_id))
            if not invoice_service.can_record_payment(invoice):
                raise ConflictError(f"Payments cannot be recorded on a {invoice.status.value} invoice")
            amount = invoice_service.validate_payment(
                form.get('amount'), invoice_service.invoice_balance(invoice), payment_date
            )
            projected = invoice_service.apply_payment(invoice, Payment(
                invoice_id=invoice_id,
                amount=amount,
                payment_date=payment_date,
                payment_method=form_str(form, 'payment_method') or PaymentMethod.CREDIT_CARD.value,
                reference_number=form_str(form, 'reference_number'),
                notes=form_str(form, 'notes'),
            ))
            g.api.invoices.record_payment(invoice_id, invoice_service.build_payment_payload(
                amount, payment_date,
                payment_method=form_str(form, 'payment_method'),
                reference_number=form_str(form, 'reference_number'),
                notes=form_str(form, 'notes'),
            ))
    except ValidationError as e:
        flash_errors(e)
    except (ConflictError, ApiError) as e:
        flash(e.message, 'error')
    else:
        if projected.status == InvoiceStatus.PAID:
            flash('Payment recorded. Invoice is paid in full', 'success')
        else:
            flash('Payment recorded successfully', 'success')

    return redirect(url_for('invoices.view_invoice', invoice_id=invoice_id))


# ==================== STATUS ====================

@bp.route('/<invoice_id>/action/<event>', methods=['POST'])
@login_required
def transition(invoice_id, event):
    """Send, cancel or void an invoice"""
    invoice = g.api.invoices.get(invoice_id)
    try:
        if not INVOICE_LIFECYCLE.get(event).user_action:
            raise ConflictError(f"Invoices cannot be marked {event.replace('_', ' ')} by hand")
        target = INVOICE_LIFECYCLE.transition(invoice.status, event)
        if target == invoice.status.value:
            flash(f"Invoice is already {target}", 'info')
        elif event == 'send':
            g.api.invoices.send(invoice_id)
            flash('Invoice sent successfully', 'success')
        else:
            g.api.invoices.update_status(invoice_id, target)
            flash(f"Invoice {target}", 'success')
    except (ConflictError, ApiError) as e:
        flash(e.message, 'error')

    return redirect(url_for('invoices.view_invoice', invoice_id=invoice_id))


@bp.route('/<invoice_id>/status', methods=['POST'])
@login_required
def update_status(invoice_id):
    """Manual status edit, allowed on drafts only"""
    invoice = g.api.invoices.get(invoice_id)
    new_status = form_str(request.form, 'status')
    try:
        if not invoice_service.can_edit_status(invoice.status):
            raise ConflictError('Status can only be edited on draft invoices')
        if new_status not in {s.value for s in InvoiceStatus}:
            raise ValidationError.single('status', 'Unknown status')
        g.api.invoices.update_status(invoice_id, new_status)
    except ValidationError as e:
        flash_errors(e)
    except (ConflictError, ApiError) as e:
        flash(e.message, 'error')
    else:
        flash('Invoice status updated', 'success')

    return redirect(url_for('invoices.view_invoice', invoice_id=invoice_id))


@bp.route('/<invoice_id>/reminder', methods=['POST'])
@login_required
def send_reminder(invoice_id):
    """Send a payment reminder for an outstanding invoice"""
    invoice = _with_payments(g.api.invoices.get(invoice_id))
    try:
        if not invoice_service.can_send_reminder(invoice):
            raise ConflictError('Reminders can only be sent for outstanding invoices')
        g.api.invoices.send_reminder(invoice_id)
    except (ConflictError, ApiError) as e:
        flash(e.message, 'error')
    else:
        flash('Reminder sent successfully', 'success')

    return redirect(url_for('invoices.view_invoice', invoice_id=invoice_id))


@bp.route('/<invoice_id>/pdf')
@login_required
def download_pdf(invoice_id):
    """Redirect to the rendered PDF"""
    try:
        url = g.api.invoices.pdf_url(invoice_id)
    except ApiError as e:
        flash(e.message, 'error')
        return redirect(url_for('invoices.view_invoice', invoice_id=invoice_id))
    if not url:
        flash('PDF is not available for this invoice', 'error')
        return redirect(url_for('invoices.view_invoice', invoice_id=invoice_id))
    return redirect(url)


@bp.route('/<invoice_id>/delete', methods=['POST'])
@login_required
def delete_invoice(invoice_id):
    """Delete invoice"""
    try:
        g.api.invoices.delete(invoice_id)
    except ApiError as e:
        flash(e.message, 'error')
        return redirect(url_for('invoices.view_invoice', invoice_id=invoice_id))

    flash('Invoice deleted successfully', 'success')
    return redirect(url_for('invoices.list_invoices'))
