from contextlib import contextmanager
from datetime import datetime

from flask import Flask
from pytz import UTC

from ....domain.agent import User
from ....domain.event import CreateSubmission
from .. import init_app, create_all, drop_all, models, current_session, \
    store_event, bootstrap


@contextmanager
def in_memory_db(app=None, seed=True):
    """Provide an in-memory sqlite database for testing purposes."""
    if app is None:
        app = Flask('foo')
    app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite://'
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['ENABLE_CALLBACKS'] = 0
    init_app(app)
    with app.app_context():
        create_all()
        if seed:
            bootstrap.seed()
        try:
            yield current_session()
        except Exception:
            raise
        finally:
            current_session().close()
            drop_all()


def add_user(user_id='u1', email=None, name='Ana Educator', **extra):
    """Add a user row, and get the corresponding agent."""
    session = current_session()
    extra.setdefault('handle', user_id)
    row = models.User(id=user_id, email=email or f'{user_id}@school.test',
                      name=name, **extra)
    session.add(row)
    session.commit()
    return row.to_agent()


def add_submission(user, activity_code='EXPLORE', payload=None,
                   created=None, **extra):
    """Store a new pending submission for ``user``."""
    event = CreateSubmission(creator=user, activity_code=activity_code,
                             payload=payload or {'reflection': 'It went well'},
                             **extra)
    event.created = created or datetime.now(UTC)
    after = event.apply(None)
    event, after = store_event(event, None, after)
    current_session().commit()
    return after
