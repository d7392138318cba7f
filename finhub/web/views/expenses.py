"""
Expenses Views - expense records, spending dashboard and the bulk import wizard
"""
from datetime import date

from flask import Blueprint, render_template, request, redirect, url_for, flash, session, g

from finhub.core.exceptions import ApiError, ConflictError, ValidationError
from finhub.schemas import ExpenseStatus
from finhub.services import analytics_service, expense_service
from finhub.services.bulk_import_service import OutcomeKind, Stage, wizard_store
from finhub.services.list_query import ListQuery
from finhub.web import fetch_or_default, login_required
from finhub.web.views.forms import flash_errors, form_bool, form_date, form_str, uploaded_files

bp = Blueprint('expenses', __name__, url_prefix='/expenses')

WIZARD_KEY = 'import_wizard_id'

OUTCOME_CATEGORY = {
    OutcomeKind.SUCCESS: 'success',
    OutcomeKind.PARTIAL: 'warning',
    OutcomeKind.FAILURE: 'error',
}


def _expense_data(form):
    return {
        'amount': form_str(form, 'amount'),
        'transaction_date': form_date(form, 'transaction_date'),
        'vendor_name': form_str(form, 'vendor_name'),
        'category_id': form_str(form, 'category_id'),
        'payment_method_id': form_str(form, 'payment_method_id'),
        'description': form_str(form, 'description'),
        'notes': form_str(form, 'notes'),
        'currency': form_str(form, 'currency'),
        'tags': form_str(form, 'tags'),
        'status': form_str(form, 'status'),
        'is_tax_deductible': form_bool(form, 'is_tax_deductible'),
        'is_reimbursable': form_bool(form, 'is_reimbursable'),
        'is_billable': form_bool(form, 'is_billable'),
    }


def _render_form(title, expense=None, status=200, **extra):
    return render_template('expenses/form.html',
                           title=title,
                           expense=expense,
                           categories=fetch_or_default(g.api.categories.list, 'expense', default=[]),
                           payment_methods=fetch_or_default(g.api.payment_methods.list, default=[]),
                           tags=fetch_or_default(g.api.expenses.tags, default=[]),
                           vendors=fetch_or_default(g.api.expenses.vendors, default=[]),
                           statuses=list(ExpenseStatus),
                           today=date.today().isoformat(),
                           **extra), status


# ==================== LIST / CREATE ====================

@bp.route('')
@login_required
def list_expenses():
    """List expenses"""
    query = ListQuery.from_args(request.args, 'expenses')
    try:
        result = g.api.expenses.list(query)
    except ApiError as e:
        flash(e.message, 'error')
        result = None

    return render_template('expenses/list.html',
                           title='Expenses',
                           expenses=result.items if result else [],
                           pagination=result.pagination if result else None,
                           query=query,
                           statuses=list(ExpenseStatus),
                           categories=fetch_or_default(g.api.categories.list, 'expense', default=[]))


@bp.route('/new', methods=['GET', 'POST'])
@login_required
def new_expense():
    """Record an expense"""
    if request.method == 'GET':
        return _render_form('New Expense')

    data = _expense_data(request.form)
    try:
        expense_service.validate_expense(data)
        expense = g.api.expenses.create(expense_service.build_expense_payload(data))
    except ValidationError as e:
        flash_errors(e)
        return _render_form('New Expense', status=400, form=request.form, errors=e.errors)
    except ApiError as e:
        flash(e.message, 'error')
        return _render_form('New Expense', status=400, form=request.form)

    flash('Expense created successfully', 'success')
    return redirect(url_for('expenses.view_expense', expense_id=expense.id))


@bp.route('/dashboard')
@login_required
def dashboard():
    """Spending for a period, split by category"""
    period = analytics_service.normalize_period(request.args.get('period'))
    stats = fetch_or_default(g.api.expenses.stats, period, default=None)
    categories = []
    if stats is not None:
        categories = analytics_service.shares(
            [c.model_dump() for c in stats.category_breakdown], ('category_name',), ('total',)
        )

    return render_template('expenses/dashboard.html',
                           title='Expense Dashboard',
                           period=period,
                           periods=analytics_service.PERIODS,
                           stats=stats,
                           categories=categories,
                           tags=fetch_or_default(g.api.expenses.tags, default=[]),
                           vendors=fetch_or_default(g.api.expenses.vendors, default=[]))


# ==================== BULK IMPORT ====================

def current_wizard():
    """The user's wizard, created on first use"""
    wizard = wizard_store.get_or_create(session.get(WIZARD_KEY))
    session[WIZARD_KEY] = wizard.id
    return wizard


def _back():
    return redirect(url_for('expenses.bulk_import'))


@bp.route('/import')
@login_required
def bulk_import():
    """Current stage of the import wizard"""
    wizard = current_wizard()

    if wizard.stage == Stage.REVIEW:
        categories = fetch_or_default(g.api.categories.list, 'expense', default=[])
        payment_methods = fetch_or_default(g.api.payment_methods.list, default=[])
        return render_template('expenses/import_review.html',
                               title='Review Expenses',
                               wizard=wizard,
                               review=wizard.review,
                               categories=categories,
                               payment_methods=payment_methods)

    if wizard.stage == Stage.DONE:
        return render_template('expenses/import_result.html',
                               title='Import Complete',
                               wizard=wizard,
                               outcome=wizard.outcome)

    return render_template('expenses/import_upload.html',
                           title='Import Expenses',
                           wizard=wizard,
                           files=wizard.files)


@bp.route('/import/files', methods=['POST'])
@login_required
def add_files():
    """Add files to the selection"""
    wizard = current_wizard()
    try:
        selection = wizard.select_files(uploaded_files(request.files.getlist('files')))
    except ConflictError as e:
        flash(e.message, 'error')
        return _back()

    for message in selection.rejected:
        flash(message, 'error')
    if selection.warning:
        flash(selection.warning, 'warning')
    return _back()


@bp.route('/import/files/<int:index>/remove', methods=['POST'])
@login_required
def remove_file(index):
    """Remove one file from the selection"""
    try:
        current_wizard().remove_file(index)
    except ConflictError as e:
        flash(e.message, 'error')
    return _back()


@bp.route('/import/extract', methods=['POST'])
@login_required
def extract():
    """Upload the selection for extraction"""
    wizard = current_wizard()
    try:
        ticket, files = wizard.begin_extraction()
    except ValidationError as e:
        flash_errors(e)
        return _back()
    except ConflictError as e:
        flash(e.message, 'error')
        return _back()

    try:
        import_session = g.api.bulk_import.upload_and_extract(files)
    except ApiError as e:
        if wizard.fail_extraction(ticket, e.message):
            flash(e.message, 'error')
        return _back()
    except Exception:
        wizard.fail_extraction(ticket, 'Extraction was interrupted')
        raise

    if not wizard.complete_extraction(ticket, import_session):
        flash('The import was reset while files were processing; those results were discarded', 'info')
    return _back()


@bp.route('/import/review', methods=['POST'])
@login_required
def save_review():
    """Save edits and include/exclude choices"""
    wizard = current_wizard()
    if wizard.stage != Stage.REVIEW or wizard.review is None:
        flash('There is nothing to review', 'error')
        return _back()
    try:
        wizard.review.apply_form(request.form)
    except ValidationError as e:
        flash_errors(e)
    except ConflictError as e:
        flash(e.message, 'error')
    else:
        flash(wizard.review.summary(), 'info')
    return _back()


@bp.route('/import/rows/<temp_id>/toggle', methods=['POST'])
@login_required
def toggle_row(temp_id):
    """Flip inclusion of one row"""
    wizard = current_wizard()
    try:
        if wizard.review is None:
            raise ConflictError('There is nothing to review')
        wizard.review.toggle(temp_id)
    except ValidationError as e:
        flash_errors(e)
    except ConflictError as e:
        flash(e.message, 'error')
    return _back()


@bp.route('/import/confirm', methods=['POST'])
@login_required
def confirm():
    """Create the included expenses"""
    wizard = current_wizard()
    try:
        if wizard.review is not None and any(key.startswith('rows[') for key in request.form):
            wizard.review.apply_form(request.form)
        ticket, session_id, payload = wizard.begin_confirm()
    except ValidationError as e:
        flash_errors(e)
        return _back()
    except ConflictError as e:
        flash(e.message, 'error')
        return _back()

    try:
        result = g.api.bulk_import.confirm(session_id, payload)
    except ApiError as e:
        if wizard.fail_confirm(ticket, e.message):
            flash(e.message, 'error')
        return _back()
    except Exception:
        wizard.fail_confirm(ticket, 'Confirmation was interrupted')
        raise

    outcome = wizard.complete_confirm(ticket, result, len(payload))
    if outcome is None:
        flash('The import was reset while expenses were being created', 'info')
    else:
        flash(outcome.message, OUTCOME_CATEGORY[outcome.kind])
    return _back()


@bp.route('/import/reset', methods=['POST'])
@login_required
def reset():
    """Discard the current import and start over"""
    current_wizard().reset()
    flash('Import reset', 'info')
    return _back()


# ==================== DETAIL ====================

@bp.route('/<expense_id>')
@login_required
def view_expense(expense_id):
    """Expense detail with its receipts"""
    expense = g.api.expenses.get(expense_id)
    return render_template('expenses/detail.html',
                           title=expense.vendor_name or 'Expense',
                           expense=expense,
                           attachments=fetch_or_default(g.api.attachments.list, 'expense', expense_id, default=[]))


@bp.route('/<expense_id>/edit', methods=['GET', 'POST'])
@login_required
def edit_expense(expense_id):
    """Edit expense"""
    expense = g.api.expenses.get(expense_id)
    if request.method == 'GET':
        return _render_form('Edit Expense', expense=expense)

    data = _expense_data(request.form)
    try:
        expense_service.validate_expense(data)
        g.api.expenses.update(expense_id, expense_service.build_expense_payload(data))
    except ValidationError as e:
        flash_errors(e)
        return _render_form('Edit Expense', expense=expense, status=400, form=request.form, errors=e.errors)
    except ApiError as e:
        flash(e.message, 'error')
        return _render_form('Edit Expense', expense=expense, status=400, form=request.form)

    flash('Expense updated successfully', 'success')
    return redirect(url_for('expenses.view_expense', expense_id=expense_id))


@bp.route('/<expense_id>/delete', methods=['POST'])
@login_required
def delete_expense(expense_id):
    """Delete expense"""
    try:
        g.api.expenses.delete(expense_id)
    except ApiError as e:
        flash(e.message, 'error')
        return redirect(url_for('expenses.view_expense', expense_id=expense_id))

    flash('Expense deleted successfully', 'success')
    return redirect(url_for('expenses.list_expenses'))
