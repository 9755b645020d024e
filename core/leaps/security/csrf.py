"""
Double-submit cookie CSRF protection for the admin API.

The secret is set in an HttpOnly cookie; clients echo it back in the
``X-CSRF-Token`` header (or the ``_csrf`` form field). A request is accepted
only when the two match.
"""

import hmac
import secrets
from functools import wraps
from typing import Any, Callable, Iterable, Optional, Tuple

from flask import Flask, Response, jsonify, request

from .. import logging
from ..globals import get_application_config

logger = logging.getLogger(__name__)

CSRF_TOKEN_HEADER = 'X-CSRF-Token'
CSRF_COOKIE_NAME = '_csrf'
CSRF_FORM_FIELD = '_csrf'
SAFE_METHODS = ('GET', 'HEAD', 'OPTIONS')


class CSRFError(Exception):
    """Invalid or missing CSRF token."""

    status = 403

    def __init__(self, message: str = 'Invalid or missing CSRF token') -> None:
        super(CSRFError, self).__init__(message)


class CSRFManager:
    """Generates and validates CSRF tokens."""

    def __init__(self, cookie_name: str = CSRF_COOKIE_NAME,
                 header_name: str = CSRF_TOKEN_HEADER,
                 token_length: int = 32, max_age: int = 3600,
                 secure: Optional[bool] = None, same_site: str = 'Lax',
                 ignore_methods: Iterable[str] = SAFE_METHODS) -> None:
        self.cookie_name = cookie_name
        self.header_name = header_name
        self.token_length = token_length
        self.max_age = max_age
        self._secure = secure
        self.same_site = same_site
        self.ignore_methods = tuple(m.upper() for m in ignore_methods)

    @property
    def secure(self) -> bool:
        """Cookies are ``Secure`` in production unless set explicitly."""
        if self._secure is not None:
            return self._secure
        environment = get_application_config().get('ENVIRONMENT',
                                                    'production')
        return environment == 'production'

    def generate_token(self) -> str:
        return secrets.token_hex(self.token_length)

    def generate_token_pair(self) -> Tuple[str, str]:
        return self.generate_token(), self.generate_token()

    def generate_single_token(self) -> str:
        secret, token = self.generate_token_pair()
        return f'{secret}.{token}'

    def validate_token_pair(self, secret: Optional[str],
                            token: Optional[str]) -> bool:
        """Both values must be present, hex, of full length, and equal."""
        if not secret or not token:
            return False
        try:
            secret_bytes = bytes.fromhex(secret)
            token_bytes = bytes.fromhex(token)
        except (TypeError, ValueError):
            return False
        return hmac.compare_digest(secret_bytes, token_bytes) \
            and len(token) == self.token_length * 2

    def validate_single_token(self, value: Optional[str]) -> bool:
        if not value or not isinstance(value, str):
            return False
        parts = value.split('.')
        if len(parts) != 2 or not all(parts):
            return False
        return self.validate_token_pair(*parts)

    def get_cookie(self, req: Any) -> Optional[str]:
        return req.cookies.get(self.cookie_name) or None

    def get_token(self, req: Any) -> Optional[str]:
        """Look for the token in the header, then in a url-encoded form."""
        token = req.headers.get(self.header_name)
        if token:
            return token
        if 'application/x-www-form-urlencoded' in \
                (req.headers.get('Content-Type') or ''):
            return req.form.get(CSRF_FORM_FIELD) or None
        return None

    def validate_request(self, req: Any) -> bool:
        if req.method.upper() in self.ignore_methods:
            return True
        secret = self.get_cookie(req)
        token = self.get_token(req)
        if not secret or not token:
            return False
        if '.' in token:
            # The secret half must also match the cookie.
            return self.validate_single_token(token) \
                and self.validate_token_pair(secret, token.split('.')[0])
        return self.validate_token_pair(secret, token)

    def set_cookie(self, response: Response, secret: str) -> None:
        response.set_cookie(self.cookie_name, secret, max_age=self.max_age,
                            path='/', secure=self.secure, httponly=True,
                            samesite=self.same_site)

    def issue(self) -> Response:
        """
        Generate a token, returned in the body and set as the cookie.

        Double-submit validation compares the header with the cookie, so the
        client must send back the same value.
        """
        secret = self.generate_token()
        response = jsonify(success=True, data={'token': secret})
        self.set_cookie(response, secret)
        return response

    def protect(self, view: Callable) -> Callable:
        """Refuse unsafe requests to ``view`` that fail validation."""
        @wraps(view)
        def inner(*args: Any, **kwargs: Any) -> Any:
            if _enabled() and not self.validate_request(request):
                return failure()
            return view(*args, **kwargs)
        return inner

    def init_app(self, app: Flask, prefix: str = '/api/admin') -> None:
        """Protect every unsafe request below ``prefix``."""
        app.config.setdefault('CSRF_ENABLED', True)

        @app.before_request
        def check_csrf() -> Optional[Response]:
            if not request.path.startswith(prefix) or not _enabled():
                return None
            if self.validate_request(request):
                return None
            return failure()


def failure() -> Response:
    logger.warning('CSRF validation failed: %s %s', request.method,
                   request.path)
    response = jsonify(success=False, error='CSRF token validation failed',
                       code='CSRF_INVALID')
    response.status_code = CSRFError.status
    return response


def _enabled() -> bool:
    return bool(int(get_application_config().get('CSRF_ENABLED', 1)))


csrf = CSRFManager()
