"""LEAPS core configuration parameters."""

from os import environ
import warnings

NAMESPACE = environ.get('NAMESPACE')
"""Namespace in which this service is deployed; to qualify keys for secrets."""

LOGLEVEL = int(environ.get('LOGLEVEL', '20'))
"""
Logging verbosity.

See `https://docs.python.org/3/library/logging.html#levels`_.
"""

ENVIRONMENT = environ.get('ENVIRONMENT', 'production')
"""Either ``development`` or ``production``; controls HSTS, CSP, cookies."""

JWT_SECRET = environ.get('JWT_SECRET')
"""Secret key for signing + verifying authentication JWTs."""

if not JWT_SECRET:
    warnings.warn('JWT_SECRET is not set; authn/z may not work correctly!')

CORE_VERSION = "0.1.0"

ENABLE_CALLBACKS = bool(int(environ.get('ENABLE_CALLBACKS', '1')))
"""Enable/disable the :func:`Event.bind` feature."""


# --- DATABASE CONFIGURATION ---

LEAPS_DATABASE_URI = environ.get('LEAPS_DATABASE_URI', 'sqlite://')
"""Full database URI for the LEAPS store."""

SQLALCHEMY_DATABASE_URI = LEAPS_DATABASE_URI
"""Full database URI for the LEAPS store."""

SQLALCHEMY_TRACK_MODIFICATIONS = False
"""Track modifications feature should always be disabled."""


# --- PROGRAM RULES ---

ORG_TIMEZONE = environ.get('ORG_TIMEZONE', 'Asia/Jakarta')
"""Timezone in which Amplify session dates and times are reported."""

AMPLIFY_PEERS_PER_7D = int(environ.get('AMPLIFY_PEERS_PER_7D', '50'))
"""Maximum number of peers trained credited in any rolling 7-day window."""

AMPLIFY_STUDENTS_PER_7D = int(environ.get('AMPLIFY_STUDENTS_PER_7D', '200'))
"""Maximum number of students trained credited in any rolling 7-day window."""

AMPLIFY_DUPLICATE_WINDOW_MINUTES = \
    int(environ.get('AMPLIFY_DUPLICATE_WINDOW_MINUTES', '45'))
"""Sessions in the same city closer than this are flagged as duplicates."""


# --- KAJABI CONFIGURATION ---

KAJABI_WEBHOOK_SECRET = environ.get('KAJABI_WEBHOOK_SECRET')
"""Shared secret used to verify the ``X-Kajabi-Signature`` HMAC."""

if not KAJABI_WEBHOOK_SECRET:
    warnings.warn('KAJABI_WEBHOOK_SECRET is not set; webhook deliveries will'
                  ' be refused unless KAJABI_ALLOW_UNSIGNED is enabled.')

KAJABI_ALLOW_UNSIGNED = bool(int(environ.get('KAJABI_ALLOW_UNSIGNED', '0')))
"""Accept unsigned webhook deliveries. Never enable this in production."""

KAJABI_LEARN_TAGS = environ.get('KAJABI_LEARN_TAGS', '')
"""Comma-separated Learn completion tags; empty means the program default."""

KAJABI_API_URL = environ.get('KAJABI_API_URL', 'https://api.kajabi.com/v1')
"""Base URL of the Kajabi REST API."""

KAJABI_API_KEY = environ.get('KAJABI_API_KEY', '')
"""OAuth client ID for the Kajabi API."""

KAJABI_CLIENT_SECRET = environ.get('KAJABI_CLIENT_SECRET', '')
"""OAuth client secret for the Kajabi API."""

KAJABI_OFFER_ID = environ.get('KAJABI_OFFER_ID')
"""Default offer granted to invited educators."""

KAJABI_VERIFY = bool(int(environ.get('KAJABI_VERIFY', '1')))
"""Enable/disable TLS certificate verification for the Kajabi API."""

KAJABI_TIMEOUT = float(environ.get('KAJABI_TIMEOUT', '10'))
"""Timeout (seconds) for requests to the Kajabi API."""


# --- RATE LIMITING ---

RATE_LIMIT_ENABLED = bool(int(environ.get('RATE_LIMIT_ENABLED', '1')))
"""Enable/disable request rate limiting."""

RATE_LIMIT_REDIS_URL = environ.get('RATE_LIMIT_REDIS_URL')
"""Redis URL for multi-instance counters; in-memory counters if unset."""

RATE_LIMIT_LOG_ENABLED = bool(int(environ.get('RATE_LIMIT_LOG_ENABLED', '0')))
"""Log a line each time a request is blocked."""


# --- SECURITY HEADERS ---

CSP_REPORT_ONLY = bool(int(environ.get('CSP_REPORT_ONLY', '0')))
"""Send ``Content-Security-Policy-Report-Only`` instead of enforcing."""

CSP_REPORT_URI = environ.get('CSP_REPORT_URI', '/api/csp-report')
"""Where browsers should send CSP violation reports."""

CSP_APPLY_TO_API = bool(int(environ.get('CSP_APPLY_TO_API', '0')))
"""Also add security headers to ``/api/`` responses."""

CSRF_ENABLED = bool(int(environ.get('CSRF_ENABLED', '1')))
"""Require double-submit CSRF tokens on mutating admin requests."""


# --- EMAIL ---

EMAIL_ENABLED = bool(int(environ.get('EMAIL_ENABLED', '0')))
"""Send review notification e-mails to participants."""

EMAIL_SENDER = environ.get('EMAIL_SENDER', 'noreply@leaps.example.org')
"""``From`` address for notification e-mails."""

SMTP_HOST = environ.get('SMTP_HOST', 'localhost')
SMTP_PORT = int(environ.get('SMTP_PORT', '0'))
SMTP_USERNAME = environ.get('SMTP_USERNAME', '')
SMTP_PASSWORD = environ.get('SMTP_PASSWORD', '')
SMTP_SSL = bool(int(environ.get('SMTP_SSL', '0')))
