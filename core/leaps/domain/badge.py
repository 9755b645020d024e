"""Badges that participants can earn."""

from typing import Optional, Dict, Any
from datetime import datetime

from dataclasses import dataclass, field

from .meta import LEARN_TAGS, EXPLORE, PRESENT

STARTER = 'STARTER'
IN_CLASS_INNOVATOR = 'IN_CLASS_INNOVATOR'
COMMUNITY_VOICE = 'COMMUNITY_VOICE'


@dataclass
class Badge:
    """A recognition that can be earned by participants."""

    code: str
    name: str
    description: str = field(default_factory=str)
    criteria: Dict[str, Any] = field(default_factory=dict)
    icon_url: Optional[str] = field(default=None)
    created: Optional[datetime] = field(default=None)


@dataclass
class EarnedBadge:
    """A badge held by a participant."""

    user_id: str
    badge_code: str
    earned_at: Optional[datetime] = field(default=None)


AUTOMATIC_BADGES: Dict[str, Badge] = {
    STARTER: Badge(STARTER, 'Starter',
                   'Completed both Elevate AI Learn courses.',
                   {'type': 'learn_tags', 'tags': list(LEARN_TAGS)}),
    IN_CLASS_INNOVATOR: Badge(IN_CLASS_INNOVATOR, 'In-Class Innovator',
                              'Applied AI in the classroom.',
                              {'type': 'approved_submission',
                               'activity': EXPLORE}),
    COMMUNITY_VOICE: Badge(COMMUNITY_VOICE, 'Community Voice',
                           'Shared the experience publicly.',
                           {'type': 'approved_submission',
                            'activity': PRESENT}),
}
"""Badges granted by the system when their criteria are met."""
