"""Helpers shared by the controllers."""

from functools import wraps
from http import HTTPStatus as status
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from werkzeug.exceptions import BadRequest, Conflict, Forbidden, NotFound, \
    BadGateway, InternalServerError

from ... import logging
from ...exceptions import InvalidEvent, AlreadyReviewed, InvalidRequest, \
    InvalidPayload, NoSuchSubmission, AlreadyProcessed, IntegrationFailed, \
    NotPermitted, SaveError
from ...security.sanitize import ContentValidationError
from ...services import store

logger = logging.getLogger(__name__)

Response = Tuple[Dict[str, Any], int, Dict[str, str]]


def success(data: Any, code: int = status.OK,
            headers: Optional[Dict[str, str]] = None) -> Response:
    return {'success': True, 'data': data}, code, headers or {}


def translate_errors(func: Callable) -> Callable:
    """Raise the HTTP exception that corresponds to a domain exception."""
    @wraps(func)
    def inner(*args: Any, **kwargs: Any) -> Response:
        try:
            return func(*args, **kwargs)
        except (AlreadyReviewed, AlreadyProcessed, store.DuplicateEntry,
                store.BadgeInUse) as e:
            raise Conflict(_message(e)) from e
        except (InvalidEvent, InvalidRequest, InvalidPayload,
                ContentValidationError) as e:
            raise BadRequest(_message(e)) from e
        except (NoSuchSubmission, store.NoSuchSubmission, store.NoSuchUser,
                store.NoSuchBadge, store.NoSuchKajabiEvent) as e:
            raise NotFound(_message(e)) from e
        except NotPermitted as e:
            raise Forbidden(_message(e)) from e
        except IntegrationFailed as e:
            raise BadGateway(_message(e)) from e
        except (SaveError, store.StoreBaseException) as e:
            logger.error('Problem interacting with database: (%s) %s',
                         type(e), e)
            raise InternalServerError('Problem interacting with database') \
                from e
    return inner


def _message(e: Exception) -> str:
    return getattr(e, 'message', '') or str(e)


def get_int(params: Mapping[str, Any], key: str, default: int) -> int:
    """Get an integer query parameter."""
    value = params.get(key)
    if value in (None, ''):
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise BadRequest(f'{key} must be an integer') from e


def require_json(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise BadRequest('No data in request')
    return data
