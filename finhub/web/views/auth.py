"""
Authentication Views
"""
from flask import Blueprint, render_template, request, redirect, url_for, flash, g

from finhub.core.exceptions import ApiError, AuthenticationError
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__, url_prefix='/auth')


def _safe_next(target):
    if target and target.startswith('/') and not target.startswith('//'):
        return target
    return url_for('dashboard.index')


@bp.route('/login', methods=['GET', 'POST'])
def login():
    """Login page"""
    if request.method == 'GET':
        if g.auth.is_authenticated:
            return redirect(url_for('dashboard.index'))
        return render_template('auth/login.html', title='Login', next=request.args.get('next', ''))

    email = (request.form.get('email') or '').strip()
    password = request.form.get('password') or ''
    if not email or not password:
        flash('Email and password are required', 'error')
        return render_template('auth/login.html', title='Login', email=email), 400

    try:
        g.api.auth.login(email, password)
    except (ApiError, AuthenticationError) as e:
        flash(e.message, 'error')
        return render_template('auth/login.html', title='Login', email=email), 401

    return redirect(_safe_next(request.form.get('next')))


@bp.route('/logout', methods=['POST'])
def logout():
    """Logout"""
    try:
        g.api.auth.logout()
    except ApiError as e:
        # Tokens are already cleared locally
        logger.warning("Logout request failed: %s", e.message)
    flash('You have been logged out', 'success')
    return redirect(url_for('auth.login'))
