"""Provides the LEAPS REST API."""

from functools import wraps
from typing import Any, Callable

from flask import Blueprint, Response, g, jsonify, make_response, request

from .. import ingest, logging
from ..domain.meta import UserRole
from ..security import ratelimit
from ..security.csrf import csrf
from .auth import require_role
from .controllers import audit, badges, kajabi, public, reports, \
    submissions, users

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__, url_prefix='/api')
admin = Blueprint('admin', __name__, url_prefix='/api/admin')


def json_response(func: Callable) -> Callable:
    """Generate a wrapper for routes that JSONifies the response body."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Response:
        r_body, r_status, r_headers = func(*args, **kwargs)
        response = jsonify(r_body)
        response.status_code = r_status
        for name, value in r_headers.items():
            response.headers[name] = value
        return response
    return wrapper


def _body() -> Any:
    return request.get_json(silent=True)


# Public routes.

@api.route('/health', methods=['GET'])
@json_response
def health() -> tuple:
    return public.health()


@api.route('/leaderboard', methods=['GET'])
@ratelimit.limit(ratelimit.public_api)
@json_response
def leaderboard() -> tuple:
    return public.leaderboard(request.args)


@api.route('/kajabi/webhook', methods=['POST'])
@ratelimit.limit(ratelimit.webhook)
def kajabi_webhook() -> Response:
    """Receive a Kajabi tag event."""
    data, code = ingest.handle_webhook(request.get_data(), request.headers)
    response = jsonify(data)
    response.status_code = code
    return response


@api.route('/csp-report', methods=['POST'])
def csp_report() -> Response:
    _, code, _ = public.csp_report(request.get_json(force=True,
                                                       silent=True))
    return make_response('', code)


@api.route('/csrf-token', methods=['GET'])
def csrf_token() -> Response:
    return csrf.issue()


# Review queue.

@admin.route('/submissions', methods=['GET'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.REVIEWER)
@json_response
def list_submissions() -> tuple:
    return submissions.list_submissions(request.args)


@admin.route('/submissions/<int:submission_id>', methods=['GET'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.REVIEWER)
@json_response
def get_submission(submission_id: int) -> tuple:
    return submissions.get_submission(submission_id)


@admin.route('/submissions', methods=['PATCH'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.REVIEWER)
@json_response
def review_submission() -> tuple:
    return submissions.review(_body(), g.user)


@admin.route('/submissions', methods=['POST'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.REVIEWER)
@json_response
def bulk_review() -> tuple:
    return submissions.bulk_review(_body(), g.user)


@admin.route('/submissions/<int:submission_id>/revoke', methods=['POST'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def revoke_submission(submission_id: int) -> tuple:
    return submissions.revoke(submission_id, _body(), g.user)


# Badges.

@admin.route('/badges', methods=['GET'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def list_badges() -> tuple:
    include_stats = request.args.get('includeStats', 'true') != 'false'
    return badges.list_badges(include_stats=include_stats)


@admin.route('/badges', methods=['POST'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def create_badge() -> tuple:
    return badges.create_badge(_body(), g.user)


@admin.route('/badges', methods=['PATCH'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def update_badge() -> tuple:
    return badges.update_badge(_body(), g.user)


@admin.route('/badges', methods=['DELETE'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def delete_badge() -> tuple:
    return badges.delete_badge(request.args.get('code'), g.user)


@admin.route('/badges/assign', methods=['POST'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def assign_badge() -> tuple:
    return badges.assign_badge(_body(), g.user)


@admin.route('/badges/assign', methods=['DELETE'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def remove_badge() -> tuple:
    return badges.remove_badge(_body(), g.user)


# Users and audit.

@admin.route('/users', methods=['GET'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def list_users() -> tuple:
    return users.list_users(request.args)


@admin.route('/users/export.csv', methods=['GET'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
def export_users() -> Response:
    content, code, headers = reports.export_users(request.args)
    return make_response(content, code, headers)


@admin.route('/users/leaps', methods=['POST'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def bulk_update_users() -> tuple:
    return users.bulk_update(_body(), g.user)


@admin.route('/users/<user_id>', methods=['PATCH'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def update_user(user_id: str) -> tuple:
    return users.update_user(user_id, _body(), g.user)


@admin.route('/audit', methods=['GET'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def list_audit() -> tuple:
    return audit.list_audit(request.args)


@admin.route('/audit/export.csv', methods=['GET'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
def export_audit() -> Response:
    content, code, headers = audit.export_csv(request.args)
    return make_response(content, code, headers)


# Kajabi.

@admin.route('/kajabi', methods=['GET'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def kajabi_events() -> tuple:
    return kajabi.list_events(request.args)


@admin.route('/kajabi/health', methods=['GET'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def kajabi_health() -> tuple:
    return kajabi.health()


@admin.route('/kajabi/reprocess', methods=['POST'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def kajabi_reprocess() -> tuple:
    return kajabi.reprocess(_body(), g.user)


@admin.route('/kajabi/invite', methods=['POST'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def kajabi_invite() -> tuple:
    return kajabi.invite(_body(), g.user)


@admin.route('/kajabi/test', methods=['POST'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
@json_response
def kajabi_test_event() -> tuple:
    return kajabi.test_event(_body(), g.user)


# Reports.

@admin.route('/exports', methods=['GET'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.ADMIN)
def export_data() -> Response:
    content, code, headers = reports.export_data(request.args, g.user)
    return make_response(content, code, headers)


@admin.route('/analytics', methods=['GET'])
@ratelimit.limit(ratelimit.admin)
@require_role(UserRole.REVIEWER)
@json_response
def analytics() -> tuple:
    return reports.analytics(request.args)
