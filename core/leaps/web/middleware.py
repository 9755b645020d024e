"""WSGI middleware for decoding authentication JWTs on each request."""

from typing import Callable, Iterable, List, Optional, Tuple, Type

import jwt
from flask import Flask

from .. import logging

logger = logging.getLogger(__name__)


class BaseMiddleware:
    """
    Base class for WSGI middlewares.

    Subclasses may implement ``before``, which is called with the WSGI
    environ and ``start_response`` before the request is handled, and must
    return them (modified or not).
    """

    def __init__(self, wsgi_app: Callable, config: Optional[dict] = None) \
            -> None:
        self.app = wsgi_app
        self.config = config if config is not None else {}

    def before(self, environ: dict, start_response: Callable) \
            -> Tuple[dict, Callable]:
        return environ, start_response

    def __call__(self, environ: dict, start_response: Callable) -> Iterable:
        environ, start_response = self.before(environ, start_response)
        return self.app(environ, start_response)


def wrap(app: Flask, middlewares: List[Type[BaseMiddleware]]) -> Flask:
    """Wrap the WSGI application of ``app`` in ``middlewares``, in order."""
    for middleware in middlewares:
        app.wsgi_app = middleware(app.wsgi_app, app.config)  # type: ignore
    return app


class AuthMiddleware(BaseMiddleware):
    """
    Middleware to handle auth information on requests.

    Before the request is handled by the application, the ``Authorization``
    header is parsed for a JWT signed with ``JWT_SECRET`` (HS256). If the
    token is valid, its claims (``user_id``, ``role``, ``email``, ``name``)
    are attached to the request.

    This can be accessed in the application via
    ``flask.request.environ['auth']``. If the Authorization header was not
    included, or if the JWT could not be verified, then that value will be
    ``None``.
    """

    def before(self, environ: dict, start_response: Callable) \
            -> Tuple[dict, Callable]:
        """Parse the ``Authorization`` header in the request."""
        token = environ.get('HTTP_AUTHORIZATION')
        environ['auth'] = None
        if not token:
            return environ, start_response
        if token.lower().startswith('bearer '):
            token = token[7:].strip()
        secret = self.config.get('JWT_SECRET')
        if not secret:
            logger.warning('JWT_SECRET is not set; ignoring token')
            return environ, start_response
        try:
            decoded = jwt.decode(token, secret, algorithms=['HS256'])
        except jwt.exceptions.InvalidTokenError as e:
            logger.debug('Rejected token: %s', e)
            return environ, start_response
        if not decoded.get('user_id'):
            return environ, start_response

        environ['auth'] = {
            'user_id': str(decoded['user_id']),
            'role': decoded.get('role'),
            'email': decoded.get('email') or '',
            'name': decoded.get('name') or '',
            'user_type': decoded.get('user_type'),
            'token': token
        }
        return environ, start_response
