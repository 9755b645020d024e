"""
Event-centric backend for the MS Elevate LEAPS tracker.

Educators progress through five stages (Learn, Explore, Amplify, Present,
Shine) and earn points and badges for the evidence that they submit.
Submissions are mutated only by commands (events), so that every review
decision has a precise and complete record.

Overview
========

Event types are defined in :mod:`.domain.event`. Each event type defines its
data, and has ``validate`` and ``project`` methods that implement its logic.
Events operate on :class:`.domain.submission.Submission` instances.

.. code-block:: python

   from leaps import create, review, User
   educator = User('u1', 'ana@school.test')
   submission = create(educator, 'EXPLORE', {'reflection': 'It went well'})
   review(submission.submission_id, 'approve', reviewer)


:mod:`.core` defines the persistence API and the review workflow.
:func:`.core.save` is used to commit new events; :func:`.core.load_fast`
retrieves the latest projected state of a submission. Committing an event
also writes the points ledger, audit, and badge rows that it implies, in the
same transaction (see :mod:`.services.store.log`).

Watch out for :class:`.exceptions.InvalidEvent` and
:class:`.exceptions.InvalidRequest` to catch validation problems (bad data,
submission in the wrong state, adjustments out of bounds). Watch for
:class:`.SaveError` to catch problems with persisting events.

Learn points are credited from Kajabi webhook deliveries; see
:mod:`.ingest`. The REST API is in :mod:`.web`.
"""

import os

from flask import Flask, Blueprint

from .domain.event import CreateSubmission, SetVisibility, \
    ApproveSubmission, RejectSubmission, RevokeSubmission
from .domain.agent import Agent, User, System, Client
from .domain.submission import Submission
from .core import load, load_fast, save, create, review, bulk_review, \
    revoke, list_submissions
from .exceptions import InvalidEvent, InvalidRequest, NoSuchSubmission, \
    SaveError
from . import core


def init_app(app: Flask) -> None:
    """Configure services, and make the e-mail templates available."""
    core.init_app(app)
    template_folder = os.path.join(os.path.dirname(os.path.realpath(__file__)),
                                   'templates')
    app.register_blueprint(
        Blueprint('leaps-core', __name__, template_folder=template_folder)
    )
