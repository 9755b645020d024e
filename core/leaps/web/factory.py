"""Application factory for the LEAPS API."""

from flask import Flask, Response, jsonify
from werkzeug.exceptions import HTTPException, InternalServerError

from .. import init_app, logging
from ..security import csp
from ..security.csrf import csrf
from . import routes
from .middleware import wrap, AuthMiddleware

logger = logging.getLogger(__name__)


def jsonify_exception(error: HTTPException) -> Response:
    """Render an HTTP exception as a JSON error response."""
    response = jsonify(success=False, error=error.description)
    response.status_code = error.code or 500
    for name, value in error.get_headers():
        if name.lower() != 'content-type':
            response.headers[name] = value
    return response


def handle_server_error(error: InternalServerError) -> Response:
    original = getattr(error, 'original_exception', None)
    if original is not None:
        logger.error('Unhandled exception: (%s) %s', type(original),
                     original, exc_info=original)
        error = InternalServerError('Internal Server Error')
    return jsonify_exception(error)


def register_error_handlers(app: Flask) -> None:
    app.register_error_handler(HTTPException, jsonify_exception)
    app.register_error_handler(InternalServerError, handle_server_error)


def create_web_app() -> Flask:
    """Initialize an instance of the LEAPS API."""
    app = Flask('leaps')
    app.config.from_pyfile('config.py')
    init_app(app)
    csp.init_app(app)
    csrf.init_app(app, prefix='/api/admin')

    app.register_blueprint(routes.api)
    app.register_blueprint(routes.admin)
    register_error_handlers(app)

    wrap(app, [AuthMiddleware])
    return app
