"""
Sanitization of user-generated content.

Free text is stored as plain, HTML-escaped text; markup is removed with
:mod:`bleach`. URLs, e-mail addresses and phone numbers are normalised, or
refused (``None``) when they cannot be made safe.
"""

import html
import math
import re
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlparse

import bleach
from dateutil import parser as dateparser

from .. import logging
from ..domain.meta import LEARN, EXPLORE, AMPLIFY, PRESENT, SHINE
from ..rules.scoring import PEERS_CAP, STUDENTS_CAP, as_count

logger = logging.getLogger(__name__)

CONTENT_LIMITS = {
    'SHORT_TEXT': 255,
    'MEDIUM_TEXT': 1000,
    'LONG_TEXT': 5000,
    'URL': 2048,
    'EMAIL': 254,
    'PHONE': 20,
}
SHORT = CONTENT_LIMITS['SHORT_TEXT']
MEDIUM = CONTENT_LIMITS['MEDIUM_TEXT']
LONG = CONTENT_LIMITS['LONG_TEXT']

HTML_ENTITIES = {'&': '&amp;', '<': '&lt;', '>': '&gt;', '"': '&quot;',
                 "'": '&#x27;', '/': '&#x2F;', '`': '&#x60;', '=': '&#x3D;'}
SAFE_URL_SCHEMES = ('http', 'https', 'mailto', 'tel')
SUSPICIOUS_HOSTS = ('javascript', 'data', 'blob')
INVALID_URL = '[INVALID URL REMOVED]'

EMAIL = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
URL_IN_TEXT = re.compile(r'https?://\S+')
HANDLE_CHARS = re.compile(r'[^a-z0-9_-]')
DANGEROUS = [re.compile(pattern, re.I) for pattern in (
    r'<script', r'javascript:', r'data:text/html', r'vbscript:',
    r'on\w+\s*=', r'<iframe', r'<object', r'<embed', r'eval\(',
    r'expression\(', r'import\s*\('
)]


class ContentValidationError(ValueError):
    """User content was refused."""

    def __init__(self, message: str, field: str, value: str) -> None:
        super(ContentValidationError, self).__init__(message)
        self.message = message
        self.field = field
        self.value = value


def escape_html(value: str) -> str:
    return ''.join(HTML_ENTITIES.get(char, char) for char in value)


def strip_html(value: str) -> str:
    """Remove all markup, leaving plain (unescaped) text."""
    return html.unescape(bleach.clean(value, tags=[], strip=True))


def sanitize_text(value: Any, max_length: int = MEDIUM,
                  allow_newlines: bool = True, preserve_spaces: bool = True,
                  allow_urls: bool = False) -> str:
    """
    Get a safe, length-limited version of a piece of free text.

    Parameters
    ----------
    value : str
    max_length : int
        Longer text is truncated (at a word boundary, when one is near the
        limit) and marked with an ellipsis.
    allow_newlines : bool
        If ``False``, line breaks are replaced with spaces. Otherwise, runs of
        three or more line breaks are collapsed to two.
    preserve_spaces : bool
        If ``False``, runs of whitespace are collapsed.
    allow_urls : bool
        If ``True``, unsafe URLs in the text are replaced.

    Raises
    ------
    :class:`ContentValidationError`
        If ``value`` is not a string.

    """
    if not isinstance(value, str):
        raise ContentValidationError('Input must be a string', 'input',
                                     str(value))
    text = strip_html(value.strip())
    if allow_urls:
        text = sanitize_urls(text)
    text = escape_html(text)
    if allow_newlines:
        text = re.sub(r'\n{3,}', '\n\n', text.replace('\r\n', '\n'))
    else:
        text = re.sub(r'[\r\n]+', ' ', text)
    if not preserve_spaces:
        text = re.sub(r'\s+', ' ', text).strip()

    if len(text) > max_length:
        text = text[:max_length].strip()
        last_space = text.rfind(' ')
        if last_space > max_length * 0.8:
            text = text[:last_space]
        text += '...'
    return text


def sanitize_url(url: Any) -> Optional[str]:
    """Get a safe URL, or ``None``. Bare hosts are assumed to be HTTPS."""
    if not url or not isinstance(url, str):
        return None
    url = url.strip()
    if len(url) > CONTENT_LIMITS['URL']:
        return None
    parsed = urlparse(url)
    if not parsed.scheme or (parsed.scheme not in SAFE_URL_SCHEMES
                             and not parsed.netloc and '.' in parsed.scheme):
        parsed = urlparse(f'https://{url}')
    scheme = parsed.scheme.lower()
    if scheme not in SAFE_URL_SCHEMES:
        return None
    if scheme in ('http', 'https'):
        host = (parsed.hostname or '').lower()
        if not host or any(bad in host for bad in SUSPICIOUS_HOSTS):
            return None
    return parsed.geturl()


def sanitize_urls(text: str) -> str:
    """Replace any URLs in ``text`` that are not safe."""
    return URL_IN_TEXT.sub(lambda m: sanitize_url(m.group(0)) or INVALID_URL,
                           text)


def sanitize_email(email: Any) -> Optional[str]:
    if not email or not isinstance(email, str):
        return None
    email = email.strip().lower()
    if len(email) > CONTENT_LIMITS['EMAIL'] or not EMAIL.match(email):
        return None
    return re.sub(r'[&<>"\'`=/]', '', email)


def sanitize_phone(phone: Any) -> Optional[str]:
    if not phone or not isinstance(phone, str):
        return None
    cleaned = re.sub(r'[^\d+]', '', phone)
    if not 7 <= len(cleaned) <= CONTENT_LIMITS['PHONE']:
        return None
    return cleaned


def _date(value: Any) -> Optional[str]:
    try:
        return dateparser.parse(value).date().isoformat()
    except (ValueError, OverflowError, TypeError):
        return None


def _text(max_length: int, newlines: bool = True) -> Callable:
    def clean(value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        return sanitize_text(value, max_length=max_length,
                             allow_newlines=newlines)
    return clean


def _count(cap: int) -> Callable:
    def clean(value: Any) -> int:
        return min(as_count(value), cap)
    return clean


def _time(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not re.match(r'^\d{1,2}:\d{2}', value):
        return None
    return value.strip()[:8]


def _minutes(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)) \
            or math.isnan(value) or value < 0:
        return None
    return int(value)


def _location(value: Any) -> Optional[Dict[str, str]]:
    if not isinstance(value, Mapping):
        return None
    clean = _text(SHORT, newlines=False)
    location = {key: clean(value.get(key))
                for key in ('venue', 'city', 'country')}
    return {key: item for key, item in location.items() if item}


def _linkedin(value: Any) -> Optional[str]:
    url = sanitize_url(value)
    return url if url and 'linkedin.com' in url else None


def _urls(value: Any) -> Optional[list]:
    if not isinstance(value, list):
        return None
    return [url for url in map(sanitize_url, value) if url]


def _strings(value: Any) -> Optional[list]:
    if not isinstance(value, list):
        return None
    clean = _text(SHORT, newlines=False)
    return [item for item in map(clean, value) if item]


PAYLOAD_FIELDS: Dict[str, Dict[str, Callable]] = {
    LEARN: {'provider': _text(50, newlines=False),
            'course_name': _text(SHORT, newlines=False),
            'certificate_url': sanitize_url,
            'certificate_hash': _text(128, newlines=False),
            'completed_at': _date},
    EXPLORE: {'reflection': _text(LONG),
              'class_date': _date,
              'school': _text(SHORT, newlines=False),
              'evidence_files': _strings},
    AMPLIFY: {'peers_trained': _count(PEERS_CAP),
              'students_trained': _count(STUDENTS_CAP),
              'attendance_proof_files': _strings,
              'session_date': _date,
              'session_start_time': _time,
              'duration_minutes': _minutes,
              'location': _location,
              'session_title': _text(SHORT, newlines=False),
              'co_facilitators': _strings,
              'evidence_note': _text(MEDIUM)},
    PRESENT: {'linkedin_url': _linkedin,
              'screenshot_url': sanitize_url,
              'caption': _text(MEDIUM)},
    SHINE: {'idea_title': _text(SHORT, newlines=False),
            'idea_summary': _text(LONG),
            'attachments': _urls},
}
"""Known payload fields for each stage, and how to clean them."""


def sanitize_submission_payload(activity_code: str,
                                payload: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Clean the payload of a submission for one of the LEAPS stages.

    Fields that are not known for the stage, or that cannot be cleaned, are
    dropped. For an unknown stage, strings are sanitized and numbers and
    booleans kept as they are.
    """
    fields = PAYLOAD_FIELDS.get(str(activity_code).upper())
    sanitized: Dict[str, Any] = {}
    if fields is None:
        for key, value in payload.items():
            if isinstance(value, str):
                sanitized[key] = sanitize_text(value)
            elif isinstance(value, (bool, int, float)):
                sanitized[key] = value
        return sanitized
    for key, clean in fields.items():
        if key not in payload or payload[key] is None:
            continue
        value = clean(payload[key])
        if value is not None:
            sanitized[key] = value
    return sanitized


def sanitize_user_profile(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Clean the editable fields of a user profile."""
    profile: Dict[str, Any] = {}
    for key in ('name', 'school'):
        if data.get(key):
            profile[key] = sanitize_text(data[key], max_length=SHORT,
                                         allow_newlines=False)
    if data.get('cohort'):
        profile['cohort'] = sanitize_text(data['cohort'], max_length=SHORT,
                                          allow_newlines=False)
    if data.get('bio'):
        profile['bio'] = sanitize_text(data['bio'], max_length=MEDIUM)
    if data.get('handle'):
        handle = HANDLE_CHARS.sub('', str(data['handle']).lower())
        if 3 <= len(handle) <= 30:
            profile['handle'] = handle
    if data.get('website'):
        website = sanitize_url(data['website'])
        if website:
            profile['website'] = website
    return profile


def sanitize_batch(inputs: Mapping[str, Any],
                   **options: Any) -> Dict[str, str]:
    """Sanitize several fields; any that fail are blanked."""
    sanitized = {}
    for key, value in inputs.items():
        try:
            sanitized[key] = sanitize_text(value, **options)
        except ContentValidationError as e:
            logger.warning('Failed to sanitize field %s: %s', key, e)
            sanitized[key] = ''
    return sanitized


def contains_dangerous_content(text: str) -> bool:
    return any(pattern.search(text) for pattern in DANGEROUS)


def validate_content_security(text: str, field: str) -> None:
    """
    Raises
    ------
    :class:`ContentValidationError`
        If ``text`` looks like an attempt to inject script.

    """
    if contains_dangerous_content(text):
        raise ContentValidationError(
            'Content contains potentially dangerous patterns', field,
            text[:100]
        )
