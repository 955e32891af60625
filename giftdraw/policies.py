from __future__ import annotations

from flask.views import MethodView
from flask_login import current_user

from .errors import Forbidden, Unauthorized
from .models import Participant


def is_admin_user() -> bool:
    return current_user.is_authenticated and getattr(current_user, "is_admin", False)


def current_participant() -> Participant | None:
    if current_user.is_authenticated and isinstance(current_user._get_current_object(), Participant):
        return current_user._get_current_object()
    return None


class AdminRequiredMixin(MethodView):
    def dispatch_request(self, *args, **kwargs):
        if not current_user.is_authenticated:
            raise Unauthorized("Log in as the organiser first.")
        if not is_admin_user():
            raise Forbidden("Not authorized.")
        return super().dispatch_request(*args, **kwargs)


class ParticipantRequiredMixin(MethodView):
    """Only verified participants with a session may use these views."""

    def dispatch_request(self, *args, **kwargs):
        if current_participant() is None:
            raise Unauthorized("Verify your registration to continue.")
        return super().dispatch_request(*args, **kwargs)
