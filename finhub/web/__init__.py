"""
Flask Frontend Application
"""
from datetime import date, datetime
from functools import wraps
import logging

from flask import Flask, render_template, request, redirect, url_for, session, flash, g
from flask_wtf.csrf import CSRFProtect
from dotenv import load_dotenv

load_dotenv()

from finhub.core.config import settings
from finhub.core.exceptions import ApiError, AuthenticationError, NotFoundError
from finhub.core.money import currency_symbol, format_money
from finhub.api import Api, ApiClient, AuthContext
from finhub.services.attachment_service import format_file_size

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize app
app = Flask(__name__)
app.secret_key = settings.SECRET_KEY
app.config['SESSION_COOKIE_HTTPONLY'] = True
app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
app.config['SESSION_COOKIE_SECURE'] = settings.SESSION_COOKIE_SECURE
# Room for a full upload batch; per-file limits are checked with a message
app.config['MAX_CONTENT_LENGTH'] = max(
    (settings.BULK_IMPORT_MAX_FILES + 1) * settings.BULK_IMPORT_MAX_FILE_MB,
    (settings.ATTACHMENT_MAX_FILES + 1) * settings.ATTACHMENT_MAX_FILE_MB,
) * 1024 * 1024

# CSRF Protection
app.config['WTF_CSRF_HEADERS'] = ['X-CSRFToken', 'X-CSRF-Token']
app.config['WTF_CSRF_TIME_LIMIT'] = None
csrf = CSRFProtect(app)


# ==================== HELPERS ====================

def build_api(auth: AuthContext) -> Api:
    """API facade for one request"""
    return Api(ApiClient(auth=auth))


@app.before_request
def bind_api():
    g.auth = AuthContext.load(session)
    g.api = build_api(g.auth)


@app.after_request
def persist_auth(response):
    auth = g.get('auth')
    if auth is not None:
        auth.save(session)
    return response


def fetch_or_default(fn, *args, default=None, **kwargs):
    """
    Call an API method for a secondary panel, degrading to default on failure.

    An expired session still propagates so the user is sent to log in.
    """
    try:
        return fn(*args, **kwargs)
    except ApiError as e:
        logger.warning("%s failed: %s", getattr(fn, '__qualname__', fn), e.message)
        return default


def login_required(f):
    """Decorator to require login"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not g.auth.is_authenticated:
            return redirect(url_for('auth.login', next=request.path))
        return f(*args, **kwargs)
    return decorated_function


@app.context_processor
def inject_globals():
    """Inject global variables into templates"""
    auth = g.get('auth')
    return {
        'current_user': auth.user if auth is not None else {},
        'app_name': settings.APP_NAME,
        'current_year': datetime.now().year,
    }


@app.template_filter('currency')
def currency_filter(value, code=None):
    """Format number as currency with the proper symbol"""
    return format_money(value, currency_symbol(code or settings.DEFAULT_CURRENCY))


@app.template_filter('date')
def date_filter(value, format='%Y-%m-%d'):
    """Format date"""
    if isinstance(value, (date, datetime)):
        return value.strftime(format)
    if value:
        try:
            return datetime.strptime(str(value)[:10], '%Y-%m-%d').strftime(format)
        except ValueError:
            pass
    return value or ''


@app.template_filter('status_label')
def status_label_filter(value):
    value = getattr(value, 'value', value)
    return str(value or '').replace('_', ' ').title()


@app.template_filter('filesize')
def filesize_filter(value):
    return format_file_size(value)


# ==================== ERROR HANDLERS ====================

@app.errorhandler(404)
def not_found(error):
    return render_template('shared/404.html'), 404


@app.errorhandler(NotFoundError)
def api_not_found(error):
    return render_template('shared/404.html', message=error.message), 404


@app.errorhandler(AuthenticationError)
def session_expired(error):
    g.auth.clear()
    flash(error.message, 'error')
    return redirect(url_for('auth.login', next=request.path))


@app.errorhandler(500)
def server_error(error):
    logger.error("Unhandled error on %s %s", request.method, request.path,
                 exc_info=getattr(error, 'original_exception', None) or error)
    return render_template('shared/500.html'), 500


# ==================== REGISTER BLUEPRINTS ====================

from finhub.web.views import (
    auth, dashboard, clients, contracts, subscriptions, invoices, expenses, attachments, revenue
)

app.register_blueprint(auth.bp)
app.register_blueprint(dashboard.bp)
app.register_blueprint(clients.bp)
app.register_blueprint(contracts.bp)
app.register_blueprint(subscriptions.bp)
app.register_blueprint(invoices.bp)
app.register_blueprint(expenses.bp)
app.register_blueprint(attachments.bp)
app.register_blueprint(revenue.bp)


# ==================== MAIN ROUTES ====================

@app.route('/')
def index():
    """Root route"""
    if g.auth.is_authenticated:
        return redirect(url_for('dashboard.index'))
    return redirect(url_for('auth.login'))
