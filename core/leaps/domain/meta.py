"""Program constants for the LEAPS stages, roles, and point sources."""

from typing import Dict, Tuple

LEARN = 'LEARN'
EXPLORE = 'EXPLORE'
AMPLIFY = 'AMPLIFY'
PRESENT = 'PRESENT'
SHINE = 'SHINE'

ACTIVITY_CODES: Tuple[str, ...] = (LEARN, EXPLORE, AMPLIFY, PRESENT, SHINE)
"""The five LEAPS stages, in program order."""

ACTIVITY_NAMES: Dict[str, str] = {
    LEARN: 'Learn',
    EXPLORE: 'Explore',
    AMPLIFY: 'Amplify',
    PRESENT: 'Present',
    SHINE: 'Shine',
}

DEFAULT_POINTS: Dict[str, int] = {
    LEARN: 20,
    EXPLORE: 50,
    AMPLIFY: 0,     # Computed from the number of people trained.
    PRESENT: 20,
    SHINE: 0,
}

LEARN_POINTS_PER_TAG = 20
"""Points awarded for each Learn completion tag received from Kajabi."""

LEARN_TAGS: Tuple[str, ...] = ('elevate-ai-1-completed',
                               'elevate-ai-2-completed')
"""Default Kajabi tags that mark completion of a Learn course."""


class Visibility:
    """Whether a submission may appear on public pages."""

    PRIVATE = 'PRIVATE'
    PUBLIC = 'PUBLIC'

    ALL = (PRIVATE, PUBLIC)


class LedgerSource:
    """Origin of a points ledger entry."""

    MANUAL = 'MANUAL'
    WEBHOOK = 'WEBHOOK'
    FORM = 'FORM'

    ALL = (MANUAL, WEBHOOK, FORM)


class UserRole:
    """Authorization roles, in increasing order of privilege."""

    PARTICIPANT = 'PARTICIPANT'
    REVIEWER = 'REVIEWER'
    ADMIN = 'ADMIN'
    SUPERADMIN = 'SUPERADMIN'

    ORDER = (PARTICIPANT, REVIEWER, ADMIN, SUPERADMIN)

    @classmethod
    def rank(cls, role: str) -> int:
        """Position of ``role`` in the hierarchy; -1 if unknown."""
        try:
            return cls.ORDER.index(str(role).upper())
        except ValueError:
            return -1

    @classmethod
    def satisfies(cls, role: str, required: str) -> bool:
        """Determine whether ``role`` is at least as privileged as required."""
        rank = cls.rank(role)
        return rank >= 0 and rank >= cls.rank(required)


class UserType:
    """Kinds of program participants."""

    EDUCATOR = 'EDUCATOR'
    STUDENT = 'STUDENT'

    ALL = (EDUCATOR, STUDENT)
