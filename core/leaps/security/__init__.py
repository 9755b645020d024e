"""Request-level protections: rate limits, CSRF, CSP headers, sanitizing."""
