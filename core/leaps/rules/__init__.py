"""
Program rules: scoring, Amplify checks, badge criteria, and callbacks.

Callbacks are bound to events with :func:`.domain.Event.bind`; registration
is a side-effect of importing the module in which they are defined, so any
module that defines callbacks must be imported here.
"""

from . import notifications
from .scoring import compute_points, validate_adjustment
from .amplify import check_amplify, Caps
from .badges import badges_to_grant
