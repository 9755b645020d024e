"""Access to application configuration and request globals."""

import os
from typing import Any, Mapping, Optional

from flask import current_app, g, has_app_context


def get_application_config(app: Optional[Any] = None) -> Mapping[str, Any]:
    """
    Get a configuration from the current app, or fall back to env.

    Parameters
    ----------
    app : :class:`flask.Flask`

    Returns
    -------
    dict-like
        Either the Flask app config, or :data:`os.environ`.

    """
    if app is not None and hasattr(app, 'config'):
        return app.config
    if has_app_context():
        return current_app.config
    return os.environ


def get_application_global() -> Optional[Any]:
    """Get the current application global (``flask.g``), if available."""
    if has_app_context():
        return g
    return None
