"""Seed data, and synthetic data for testing and development purposes."""

import random
import uuid
from typing import List

from mimesis import Person, Address, Finance
from mimesis.locales import Locale

from ...domain.badge import AUTOMATIC_BADGES
from ...domain.meta import ACTIVITY_CODES, ACTIVITY_NAMES, DEFAULT_POINTS, \
    UserType
from ...domain.util import make_handle
from .util import transaction
from . import models

LOCALES = [Locale.EN, Locale.EN_GB, Locale.DE, Locale.ES, Locale.FR,
           Locale.NL, Locale.PT]

COHORTS = ['Cohort 1', 'Cohort 2', 'Cohort 3']


def _get_locale() -> Locale:
    return random.choice(LOCALES)


def activities() -> List[models.Activity]:
    """Generate the five LEAPS stages."""
    return [models.Activity(code=code, name=ACTIVITY_NAMES[code],
                            default_points=DEFAULT_POINTS[code])
            for code in ACTIVITY_CODES]


def badges() -> List[models.Badge]:
    """Generate definitions for the automatically granted badges."""
    return [models.Badge(code=badge.code, name=badge.name,
                         description=badge.description,
                         criteria=badge.criteria, icon_url=badge.icon_url)
            for badge in AUTOMATIC_BADGES.values()]


def users(count: int = 50) -> List[models.User]:
    """Generate a bunch of random participants."""
    _users = []
    handles = set()
    for i in range(count):
        locale = _get_locale()
        person = Person(locale)
        name = person.full_name()
        handle = make_handle(name) or 'user'
        if handle in handles:
            handle = f'{handle}-{i}'
        handles.add(handle)
        _users.append(models.User(
            id=f'user_{uuid.uuid4().hex[:24]}',
            email=person.email(unique=True),
            name=name,
            handle=handle,
            school=f'{Address(locale).city()} {Finance(locale).company()}',
            cohort=random.choice(COHORTS),
            user_type=UserType.STUDENT if random.random() < 0.1
            else UserType.EDUCATOR
        ))
    return _users


def seed() -> None:
    """Add the stages and automatic badges, unless already present."""
    with transaction() as session:
        for row in activities() + badges():
            session.merge(row)


def populate(count: int = 50) -> List[models.User]:
    """Seed the database and add ``count`` fake participants."""
    seed()
    with transaction() as session:
        fake = users(count)
        session.add_all(fake)
    return fake
