import hmac
import os
from functools import wraps

from flask import jsonify, request


class AuthConfigError(Exception):
    def __init__(self, code, message):
        super().__init__(message)
        self.code = code
        self.message = message


def _error_response(status_code: int, code: str, message: str):
    return (
        jsonify({'success': False, 'error': {'code': code, 'message': message}}),
        status_code,
    )


def _configured_secret(env_name):
    secret = os.getenv(env_name)
    if not secret:
        raise AuthConfigError(f'{env_name}_MISSING', f'{env_name} is not configured.')
    return secret


def _matches(provided, expected) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(provided.encode('utf-8'), expected.encode('utf-8'))


def admin_secret_required(func):
    """Require the ``x-admin-secret`` header to match ADMIN_SECRET."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            expected = _configured_secret('ADMIN_SECRET')
        except AuthConfigError as e:
            return _error_response(503, e.code, e.message)

        if not _matches(request.headers.get('x-admin-secret', ''), expected):
            return _error_response(401, 'UNAUTHORIZED', 'Invalid or missing admin secret')
        return func(*args, **kwargs)

    return wrapper


def cron_token_required(func):
    """Scheduler auth: ``x-cron-token`` header or ``token`` query param against CRON_TOKEN."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            expected = _configured_secret('CRON_TOKEN')
        except AuthConfigError as e:
            return _error_response(503, e.code, e.message)

        provided = request.headers.get('x-cron-token') or request.args.get('token', '')
        if not _matches(provided, expected):
            return _error_response(401, 'UNAUTHORIZED', 'Invalid or missing cron token')
        return func(*args, **kwargs)

    return wrapper
