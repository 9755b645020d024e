"""Content Security Policy and other security response headers."""

import base64
import json
import secrets
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dataclasses import dataclass, field, replace
from flask import Flask, Response, request

from .. import logging
from ..globals import get_application_config, get_application_global

logger = logging.getLogger(__name__)

NONCE_HEADER = 'X-CSP-Nonce'
REPORT_GROUP = 'csp-endpoint'

CLERK = ['https://clerk.dev', 'https://*.clerk.dev',
         'https://images.clerk.dev', 'https://img.clerk.com',
         'https://api.clerk.dev', 'https://*.clerk.com',
         'https://*.clerk.accounts.dev']
SUPABASE = ['https://*.supabase.co', 'https://*.supabase.in']
FONTS = ['https://fonts.googleapis.com', 'https://fonts.gstatic.com']
IMAGES = ['data:', 'https://res.cloudinary.com']
ANALYTICS = ['https://vitals.vercel-analytics.com',
             'https://vercel-insights.com', 'https://*.sentry.io']

PERMISSIONS_POLICY = ', '.join([
    'camera=()', 'microphone=()', 'geolocation=()', 'interest-cohort=()',
    'payment=()', 'sync-xhr=()', 'usb=()', 'magnetometer=()',
    'accelerometer=()', 'gyroscope=()', 'bluetooth=()', 'midi=()',
    'notifications=()', 'push=()', 'speaker-selection=()',
    'ambient-light-sensor=()', 'battery=()', 'display-capture=()',
    'document-domain=()', 'execution-while-not-rendered=()',
    'execution-while-out-of-viewport=()', 'fullscreen=(self)', 'gamepad=()',
    'hid=()', 'idle-detection=()', 'local-fonts=()', 'serial=()',
    'storage-access=()', 'window-management=()', 'xr-spatial-tracking=()',
])

PROTOCOLS = ('https://', 'http://', 'ws://', 'wss://')


@dataclass
class CSPOptions:
    """How to build the policy for a response."""

    nonce: Optional[str] = None
    is_development: bool = False
    report_only: bool = False
    report_uri: Optional[str] = None
    add_report_to: bool = True
    allowed_domains: Dict[str, List[str]] = field(default_factory=dict)
    """Extra sources, keyed by clerk, supabase, fonts, images, analytics,
    or external."""


def generate_nonce() -> str:
    return base64.b64encode(secrets.token_bytes(16)).decode('ascii')


def current_nonce() -> str:
    """The nonce for the current request, or a fresh one outside of one."""
    g = get_application_global()
    if g is None:
        return generate_nonce()
    if 'csp_nonce' not in g:
        g.csp_nonce = generate_nonce()
    return g.csp_nonce


def build_csp_directives(nonce: Optional[str] = None,
                         is_development: bool = False,
                         report_only: bool = False,
                         allowed_domains: Optional[Mapping[str, List[str]]]
                         = None) -> str:
    """Assemble the policy as ``directive source source; ...``."""
    extra = allowed_domains or {}
    clerk = CLERK + list(extra.get('clerk', []))
    supabase = SUPABASE + list(extra.get('supabase', []))
    fonts = FONTS + list(extra.get('fonts', []))
    images = IMAGES + clerk + supabase + list(extra.get('images', []))
    analytics = ANALYTICS + list(extra.get('analytics', []))
    external = list(extra.get('external', []))

    directives: List[Tuple[str, List[str]]] = [
        ('default-src', ["'self'"]),
        ('script-src', ["'self'"]
         + ([f"'nonce-{nonce}'"] if nonce else [])
         + ["'unsafe-eval'", "'unsafe-inline'", 'https://vercel.live']
         + clerk + analytics
         + (["'unsafe-eval'", 'webpack:'] if is_development else [])),
        ('style-src', ["'self'", "'unsafe-inline'"] + fonts + clerk),
        ('img-src', ["'self'", 'blob:', 'data:'] + images),
        ('font-src', ["'self'", 'data:'] + fonts),
        ('connect-src', ["'self'"] + clerk + supabase + analytics
         + ['https://vitals.vercel-analytics.com', 'wss://*.supabase.co']
         + (['http://localhost:*', 'ws://localhost:*']
            if is_development else [])
         + external),
        ('media-src', ["'self'", 'blob:', 'data:'] + supabase),
        ('object-src', ["'none'"]),
        ('frame-src', ["'self'"] + clerk + ['https://vercel.live']),
        ('child-src', ["'self'", 'blob:']),
        ('worker-src', ["'self'", 'blob:']),
        ('manifest-src', ["'self'"]),
        ('base-uri', ["'self'"]),
        ('form-action', ["'self'"] + clerk + supabase),
    ]
    # Ignored by browsers in report-only mode, where it only adds noise.
    if not report_only:
        directives.append(('frame-ancestors', ["'none'"]))
    if not is_development:
        directives.append(('upgrade-insecure-requests', []))
    return '; '.join(' '.join([name] + sources)
                     for name, sources in directives)


def generate_security_headers(options: CSPOptions) -> Dict[str, str]:
    """Get the full set of security headers for a response."""
    reporting = bool(options.report_only and options.report_uri
                     and options.add_report_to)
    policy = build_csp_directives(options.nonce, options.is_development,
                                  options.report_only,
                                  options.allowed_domains)
    if options.report_uri:
        policy += f'; report-uri {options.report_uri}'
    if reporting:
        policy += f'; report-to {REPORT_GROUP}'

    name = 'Content-Security-Policy-Report-Only' if options.report_only \
        else 'Content-Security-Policy'
    headers = {
        name: policy,
        'X-Frame-Options': 'DENY',
        'X-Content-Type-Options': 'nosniff',
        'Referrer-Policy': 'strict-origin-when-cross-origin',
        'Permissions-Policy': PERMISSIONS_POLICY,
        'X-XSS-Protection': '1; mode=block',
        'X-DNS-Prefetch-Control': 'on',
    }
    if not options.is_development:
        headers['Strict-Transport-Security'] = \
            'max-age=31536000; includeSubDomains; preload'
    headers.update({
        'X-Permitted-Cross-Domain-Policies': 'none',
        'Cross-Origin-Embedder-Policy': 'credentialless',
        'Cross-Origin-Opener-Policy': 'same-origin',
        'Cross-Origin-Resource-Policy': 'same-origin',
    })
    if reporting:
        headers['Report-To'] = json.dumps({
            'group': REPORT_GROUP,
            'max_age': 10886400,
            'endpoints': [{'url': options.report_uri}],
            'include_subdomains': True
        })
    return headers


def apply_security_headers(response: Response,
                           options: CSPOptions) -> Response:
    for name, value in generate_security_headers(options).items():
        if value:
            response.headers[name] = value
    return response


def options_from_config(nonce: Optional[str] = None) -> CSPOptions:
    config = get_application_config()
    return CSPOptions(
        nonce=nonce,
        is_development=config.get('ENVIRONMENT') == 'development',
        report_only=bool(int(config.get('CSP_REPORT_ONLY', 0))),
        report_uri=config.get('CSP_REPORT_URI') or None
    )


def init_app(app: Flask, options: Optional[CSPOptions] = None) -> None:
    """Add a per-request nonce and the security headers to responses."""
    app.config.setdefault('CSP_APPLY_TO_API', False)
    app.config.setdefault('CSP_REPORT_ONLY', False)
    app.config.setdefault('CSP_REPORT_URI', '/api/csp-report')

    @app.before_request
    def set_nonce() -> None:
        current_nonce()

    @app.after_request
    def add_security_headers(response: Response) -> Response:
        if request.path.startswith('/api/') \
                and not app.config['CSP_APPLY_TO_API']:
            return response
        nonce = current_nonce()
        if options is None:
            opts = options_from_config(nonce)
        else:
            opts = replace(options, nonce=nonce)
        response.headers[NONCE_HEADER] = nonce
        return apply_security_headers(response, opts)


def validate_csp_config(options: CSPOptions) -> Tuple[bool, List[str]]:
    """Look for common misconfigurations."""
    errors = []
    for domain in options.allowed_domains.get('external', []):
        if not domain.startswith(PROTOCOLS):
            errors.append(f'External domain "{domain}" should include'
                          ' protocol (https://, http://, ws://, or wss://)')
        if '*' in domain and \
                not domain.startswith(tuple(p + '*.' for p in PROTOCOLS)):
            errors.append(f'Wildcard domain "{domain}" should be properly'
                          ' formatted (e.g., https://*.example.com)')
    if options.report_uri and not options.report_uri.startswith('http'):
        errors.append('Report URI must be a valid HTTP(S) URL')
    return len(errors) == 0, errors


def process_csp_violation(report: Mapping[str, Any]) -> Dict[str, str]:
    """Classify a browser CSP violation report."""
    violation = report.get('csp-report') or {}
    directive = str(violation.get('violated-directive') or '')
    blocked = str(violation.get('blocked-uri') or '')
    if 'script-src' in directive and 'javascript:' in blocked:
        return {'severity': 'high', 'action': 'alert',
                'reason': 'Potential XSS attempt blocked'}
    if 'frame-ancestors' in directive:
        return {'severity': 'high', 'action': 'alert',
                'reason': 'Clickjacking attempt blocked'}
    if 'object-src' in directive or 'frame-src' in directive:
        return {'severity': 'medium', 'action': 'log',
                'reason': 'Potentially malicious content blocked'}
    if blocked == 'eval' or 'unsafe-eval' in blocked:
        return {'severity': 'low', 'action': 'log',
                'reason': 'Dynamic code execution attempted'}
    return {'severity': 'low', 'action': 'log',
            'reason': 'Standard CSP violation'}
