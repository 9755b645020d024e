"""
Integration with the Kajabi REST API.

Kajabi hosts the Learn courses. We use its API to invite educators: find or
create their contact, then grant them the course offer. This represents only
a subset of the functionality provided by the Kajabi API.
"""

from http import HTTPStatus as status
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urljoin

import requests
from flask import Flask
from requests.adapters import HTTPAdapter, Retry

from .. import logging
from ..globals import get_application_config, get_application_global

logger = logging.getLogger(__name__)

JSONAPI = 'application/vnd.api+json'


class RequestFailed(IOError):
    """The Kajabi API returned an unexpected status code."""

    def __init__(self, msg: str, data: Any = None) -> None:
        super(RequestFailed, self).__init__(msg)
        self.data = data


class RequestUnauthorized(RequestFailed):
    """Client/user is not authenticated."""


class BadResponse(RequestFailed):
    """The response from Kajabi was malformed."""


class ConnectionFailed(IOError):
    """Could not connect to the Kajabi API."""


class Kajabi:
    """Encapsulates a connection with the Kajabi API."""

    class Meta:
        """Configuration for :class:`Kajabi`."""

        service_name = "kajabi"

    def __init__(self, endpoint: str, client_id: str, client_secret: str,
                 verify: bool = True, timeout: float = 10) -> None:
        self._endpoint = endpoint.rstrip('/') + '/'
        self._client_id = client_id
        self._client_secret = client_secret
        self._verify = verify
        self._timeout = timeout
        self._token: Optional[str] = None
        self._session = requests.Session()
        self._adapter = HTTPAdapter(max_retries=Retry(
            total=3, backoff_factor=0.5, status_forcelist=(502, 503, 504),
            allowed_methods=('GET',)
        ))
        self._session.mount(self._endpoint, self._adapter)

    @property
    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    def _path(self, path: str) -> str:
        return urljoin(self._endpoint, path.lstrip('/'))

    def request(self, method: str, path: str, token: Optional[str] = None,
                expected_code: Union[int, List[int]] = status.OK,
                **kwargs: Any) -> requests.Response:
        """Make a request to the Kajabi API, checking the status code."""
        if isinstance(expected_code, int):
            expected_code = [expected_code]
        headers = kwargs.pop('headers', {})
        if token is not None:
            headers['Authorization'] = f'Bearer {token}'
        try:
            resp = getattr(self._session, method)(
                self._path(path), headers=headers, verify=self._verify,
                timeout=self._timeout, **kwargs
            )
        except requests.exceptions.SSLError as e:
            raise ConnectionFailed('SSL failed: %s' % e) from e
        except requests.exceptions.ConnectionError as e:
            raise ConnectionFailed('Could not connect: %s' % e) from e
        except requests.exceptions.Timeout as e:
            raise ConnectionFailed('Request timed out: %s' % e) from e
        if resp.status_code not in expected_code:
            if resp.status_code in (status.UNAUTHORIZED, status.FORBIDDEN):
                raise RequestUnauthorized('Not authorized', resp)
            raise RequestFailed(f'Unexpected status {resp.status_code}'
                                f' for {method.upper()} {path}', resp)
        return resp

    def json(self, method: str, path: str, token: Optional[str] = None,
             expected_code: Union[int, List[int]] = status.OK,
             **kwargs: Any) -> Tuple[Dict[str, Any], int]:
        """Make a JSON:API request, and parse the response body."""
        headers = kwargs.pop('headers', {})
        headers.setdefault('Accept', JSONAPI)
        if 'json' in kwargs:
            headers.setdefault('Content-Type', JSONAPI)
        resp = self.request(method, path, token, expected_code,
                            headers=headers, **kwargs)
        if not resp.content:
            return {}, resp.status_code
        try:
            data = resp.json()
        except ValueError as e:
            raise BadResponse('Could not decode: %s' % e, resp) from e
        return data, resp.status_code

    def get_token(self, force: bool = False) -> str:
        """Get an OAuth access token using the client credentials."""
        if self._token is not None and not force:
            return self._token
        if not self.is_configured:
            raise RequestUnauthorized('Kajabi API credentials are not set')
        resp = self.request('post', 'oauth/token', data={
            'grant_type': 'client_credentials',
            'client_id': self._client_id,
            'client_secret': self._client_secret
        })
        try:
            token = resp.json()['access_token']
        except (ValueError, KeyError, TypeError) as e:
            raise BadResponse('No access token returned', resp) from e
        self._token = token
        return token

    def is_healthy(self) -> bool:
        """Check our connection to the Kajabi API."""
        try:
            self.json('get', 'contacts', self.get_token(),
                      params={'page[size]': 1})
        except Exception as e:
            logger.error('Encountered error calling Kajabi: %s', e)
            return False
        return True

    @staticmethod
    def _match(data: Dict[str, Any], email: str) -> Optional[str]:
        for contact in data.get('data') or []:
            attributes = contact.get('attributes') or {}
            if str(attributes.get('email', '')).lower() == email:
                return str(contact['id'])
        return None

    def find_contact(self, email: str) -> Optional[str]:
        """Get the ID of the contact with an e-mail address, if any."""
        email = email.lower().strip()
        data, _ = self.json('get', 'contacts', self.get_token(),
                            params={'filter[email]': email})
        return self._match(data, email)

    def create_contact(self, email: str, name: str = '') -> str:
        """Add a contact, and get its ID."""
        first, _, last = name.strip().partition(' ')
        payload = {'data': {'type': 'contacts',
                            'attributes': {'email': email.lower().strip(),
                                           'first_name': first,
                                           'last_name': last}}}
        data, _ = self.json('post', 'contacts', self.get_token(),
                            json=payload,
                            expected_code=[status.OK, status.CREATED])
        try:
            return str(data['data']['id'])
        except (KeyError, TypeError) as e:
            raise BadResponse('Created contact has no ID', data) from e

    def grant_offer(self, contact_id: str, offer_id: str) -> None:
        """
        Grant an offer (course access) to a contact.

        The relationship is created from the contact side first; some
        accounts only permit it from the offer side.
        """
        token = self.get_token()
        expected = [status.OK, status.CREATED, status.NO_CONTENT]
        try:
            self.json('post', f'contacts/{contact_id}/relationships/offers',
                      token, expected_code=expected,
                      json={'data': [{'type': 'offers', 'id': offer_id}]})
        except RequestFailed as e:
            logger.warning('Grant via contact failed (%s); trying offer', e)
            self.json('post', f'offers/{offer_id}/relationships/contacts',
                      token, expected_code=expected,
                      json={'data': [{'type': 'contacts',
                                      'id': contact_id}]})

    def enroll(self, email: str, name: str, offer_id: str) -> str:
        """Find or create the contact for ``email``, and grant the offer."""
        contact_id = self.find_contact(email)
        if contact_id is None:
            contact_id = self.create_contact(email, name)
        self.grant_offer(contact_id, offer_id)
        return contact_id

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Set default configuration parameters for an application instance."""
        config = app.config
        config.setdefault('KAJABI_API_URL', 'https://api.kajabi.com/v1')
        config.setdefault('KAJABI_API_KEY', '')
        config.setdefault('KAJABI_CLIENT_SECRET', '')
        config.setdefault('KAJABI_VERIFY', True)
        config.setdefault('KAJABI_TIMEOUT', 10)

    @classmethod
    def get_session(cls, app: object = None) -> 'Kajabi':
        """Get a new session with the Kajabi API."""
        config = get_application_config(app)
        return cls(config.get('KAJABI_API_URL', 'https://api.kajabi.com/v1'),
                   config.get('KAJABI_API_KEY', ''),
                   config.get('KAJABI_CLIENT_SECRET', ''),
                   verify=bool(int(config.get('KAJABI_VERIFY', 1))),
                   timeout=float(config.get('KAJABI_TIMEOUT', 10)))

    @classmethod
    def current_session(cls) -> 'Kajabi':
        """Get/create :class:`.Kajabi` for this context."""
        g = get_application_global()
        if g is None:
            return cls.get_session()
        if cls.Meta.service_name not in g:
            setattr(g, cls.Meta.service_name, cls.get_session())
        return getattr(g, cls.Meta.service_name)
