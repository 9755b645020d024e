import os
from contextlib import contextmanager
from unittest import mock

import jwt

from ...services import store
from ...services.store import bootstrap
from ..factory import create_web_app

JWT_SECRET = 'foo'
WEBHOOK_SECRET = 'whsec-test'

ENV = {'LEAPS_DATABASE_URI': 'sqlite://',
       'JWT_SECRET': JWT_SECRET,
       'KAJABI_WEBHOOK_SECRET': WEBHOOK_SECRET,
       'KAJABI_ALLOW_UNSIGNED': '0',
       'RATE_LIMIT_ENABLED': '0',
       'CSRF_ENABLED': '0',
       'EMAIL_ENABLED': '0',
       'ENVIRONMENT': 'development'}


def make_app(**config):
    """Create the API with an empty in-memory database."""
    with mock.patch.dict(os.environ, ENV):
        app = create_web_app()
    app.config.update(config)
    with app.app_context():
        store.create_all()
        bootstrap.seed()
    return app


@contextmanager
def context(app):
    with app.app_context():
        yield store.current_session()


def token(user_id='admin', role='ADMIN', **claims):
    """Mint a bearer token for the test API."""
    claims.update({'user_id': user_id, 'role': role,
                   'email': f'{user_id}@school.test', 'name': user_id})
    return {'Authorization': 'Bearer ' + jwt.encode(claims, JWT_SECRET,
                                                    algorithm='HS256')}
