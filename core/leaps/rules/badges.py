"""Criteria for granting automatic badges."""

from typing import Iterable, List, Mapping, Set

from ..domain.badge import STARTER, IN_CLASS_INNOVATOR, COMMUNITY_VOICE
from ..domain.meta import LEARN_TAGS, EXPLORE, PRESENT


def badges_to_grant(have: Iterable[str], tags: Iterable[str],
                    approved: Mapping[str, int]) -> List[str]:
    """
    Determine which automatic badges a participant has newly earned.

    Badges are sticky: a badge that is already held is never reported, and
    nothing here takes a badge away.

    Parameters
    ----------
    have : iterable
        Codes of badges the participant already holds.
    tags : iterable
        Learn completion tags granted to the participant.
    approved : dict
        Number of approved submissions, keyed by activity code.

    Returns
    -------
    list
        Badge codes to grant, in a stable order.

    """
    held: Set[str] = set(have)
    tag_set = {tag.lower() for tag in tags}
    grant: List[str] = []
    if STARTER not in held and all(t in tag_set for t in LEARN_TAGS):
        grant.append(STARTER)
    if IN_CLASS_INNOVATOR not in held and approved.get(EXPLORE, 0) > 0:
        grant.append(IN_CLASS_INNOVATOR)
    if COMMUNITY_VOICE not in held and approved.get(PRESENT, 0) > 0:
        grant.append(COMMUNITY_VOICE)
    return grant
