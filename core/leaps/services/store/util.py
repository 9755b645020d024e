"""Utility classes and functions for :mod:`.services.store`."""

import sqlite3
from contextlib import contextmanager
from typing import Optional, Generator, Any

from flask import Flask
import sqlalchemy.types as types
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm.session import Session
from flask_sqlalchemy import SQLAlchemy

from ... import logging, serializer
from ... import exceptions as domain
from .exceptions import StoreBaseException, TransactionFailed

logger = logging.getLogger(__name__)

DEPTH = 'leaps.transaction_depth'

PASSTHROUGH = (StoreBaseException, domain.InvalidEvent, domain.InvalidRequest,
               domain.InvalidPayload, domain.NothingToDo,
               domain.NoSuchSubmission, domain.AlreadyProcessed,
               domain.IntegrationFailed, domain.NotPermitted)
"""Exceptions that roll back a transaction but are re-raised unchanged."""


class LeapsSQLAlchemy(SQLAlchemy):
    """SQLAlchemy integration for the LEAPS database."""

    def init_app(self, app: Flask) -> None:
        """Set default configuration."""
        app.config.setdefault(
            'SQLALCHEMY_DATABASE_URI',
            app.config.get('LEAPS_DATABASE_URI', 'sqlite://')
        )
        app.config.setdefault('SQLALCHEMY_TRACK_MODIFICATIONS', False)
        if not app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
            options = app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', {})
            options.setdefault('json_serializer', serializer.dumps)
            options.setdefault('json_deserializer', serializer.loads)
            options.setdefault('pool_pre_ping', True)
        super(LeapsSQLAlchemy, self).init_app(app)


db: SQLAlchemy = LeapsSQLAlchemy()


# pysqlite defers BEGIN until the first write, which breaks SAVEPOINT; let
# SQLAlchemy emit BEGIN itself instead.
@event.listens_for(Engine, 'connect')
def _sqlite_connect(dbapi_connection: Any, connection_record: Any) -> None:
    if isinstance(dbapi_connection, sqlite3.Connection):
        dbapi_connection.isolation_level = None


@event.listens_for(Engine, 'begin')
def _sqlite_begin(connection: Any) -> None:
    if connection.dialect.name == 'sqlite':
        connection.exec_driver_sql('BEGIN')


class SQLiteJSON(types.TypeDecorator):
    """JSON stored as TEXT, through :mod:`leaps.serializer`."""

    impl = types.TEXT
    cache_ok = True

    def process_bind_param(self, value: Optional[Any],
                           dialect: Any) -> Optional[str]:
        return None if value is None else serializer.dumps(value)

    def process_result_value(self, value: Optional[str],
                             dialect: Any) -> Optional[Any]:
        return None if value is None else serializer.loads(value)


FriendlyJSON = types.JSON().with_variant(SQLiteJSON, 'sqlite')
"""Native JSON where the database has it; serialized TEXT on SQLite."""


def current_engine() -> Engine:
    return db.engine


def current_session() -> Session:
    """The session scoped to the current application context."""
    return db.session()


@contextmanager
def transaction() -> Generator:
    """
    Context manager for database transaction.

    Transactions may be nested; only the outermost block commits (or rolls
    back), so that operations composed of several writes stay atomic.
    """
    session = current_session()
    depth = session.info.get(DEPTH, 0)
    session.info[DEPTH] = depth + 1
    try:
        yield session
        if depth == 0:
            session.commit()
    except PASSTHROUGH as e:
        if depth == 0:
            logger.debug('Command failed, rolling back: %s', str(e))
            session.rollback()
        raise
    except Exception as e:
        if depth > 0:
            raise
        logger.debug('Command failed, rolling back: %s', str(e))
        session.rollback()
        raise TransactionFailed('Failed to execute transaction') from e
    finally:
        session.info[DEPTH] = depth
