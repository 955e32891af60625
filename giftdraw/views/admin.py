from __future__ import annotations

from flask import Blueprint, current_app, jsonify
from flask.views import MethodView
from flask_login import login_user, logout_user

from ..errors import Unauthorized
from ..extensions import limiter
from ..forms import AdminLoginForm, EventForm
from ..models import AdminUser
from ..policies import AdminRequiredMixin
from ..security import verify_secret
from ..services.draws import draw_event, undo_last_draw
from ..services.events import (
    cancel_event,
    create_event,
    delete_event,
    event_summary,
    exclude_participant,
    get_event_history,
    include_participant,
    list_events,
)
from ..services.gift_lists import gift_list_snapshot
from ..services.participants import (
    delete_participant,
    get_participant,
    list_participants,
    participant_summaries,
)


admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


class AdminLoginView(MethodView):
    @limiter.limit("admin-login")
    def post(self):
        form = AdminLoginForm()
        form.validate_or_raise()
        if not verify_secret(form.password.data, current_app.config["ADMIN_PASSWORD_HASH"]):
            raise Unauthorized("Invalid organiser password.")
        login_user(AdminUser())
        return jsonify({"message": "Logged in."})


class AdminLogoutView(MethodView):
    def post(self):
        logout_user()
        return "", 204


# --------- Participants ----------

class ParticipantsView(AdminRequiredMixin):
    def get(self):
        return jsonify(participant_summaries(list_participants()))


class ParticipantDetailView(AdminRequiredMixin):
    def get(self, participant_id: int):
        participant = get_participant(participant_id)
        body = participant_summaries([participant])[0]
        body["giftList"] = gift_list_snapshot(participant)
        return jsonify(body)

    def delete(self, participant_id: int):
        delete_participant(participant_id)
        return "", 204


# --------- Events ----------

class EventsView(AdminRequiredMixin):
    def get(self):
        return jsonify([event_summary(e) for e in list_events()])

    def post(self):
        form = EventForm()
        form.validate_or_raise()
        event = create_event(
            name=form.name.data,
            participant_ids=form.participant_ids.data,
            location=form.location.data,
            draw_at=form.draw_at.data,
            moderator_email=form.moderator_email.data or None,
        )
        return jsonify(event_summary(event)), 201


class EventDetailView(AdminRequiredMixin):
    def delete(self, event_id: int):
        delete_event(event_id)
        return "", 204


class CancelEventView(AdminRequiredMixin):
    def post(self, event_id: int):
        return jsonify(event_summary(cancel_event(event_id)))


class DrawEventView(AdminRequiredMixin):
    def post(self, event_id: int):
        result = draw_event(event_id)
        return jsonify(result.to_dict())


class UndoDrawView(AdminRequiredMixin):
    def post(self, event_id: int):
        return jsonify(event_summary(undo_last_draw(event_id)))


class EventHistoryView(AdminRequiredMixin):
    def get(self, event_id: int):
        return jsonify(get_event_history(event_id))


class EventParticipantView(AdminRequiredMixin):
    def put(self, event_id: int, participant_id: int):
        return jsonify(event_summary(include_participant(event_id, participant_id)))

    def delete(self, event_id: int, participant_id: int):
        return jsonify(event_summary(exclude_participant(event_id, participant_id)))


# Register routes
admin_bp.add_url_rule("/login", view_func=AdminLoginView.as_view("login"), methods=["POST"])
admin_bp.add_url_rule("/logout", view_func=AdminLogoutView.as_view("logout"), methods=["POST"])

admin_bp.add_url_rule("/participants", view_func=ParticipantsView.as_view("participants"))
admin_bp.add_url_rule(
    "/participants/<int:participant_id>",
    view_func=ParticipantDetailView.as_view("participant_detail"),
    methods=["GET", "DELETE"],
)

admin_bp.add_url_rule("/events", view_func=EventsView.as_view("events"), methods=["GET", "POST"])
admin_bp.add_url_rule("/events/<int:event_id>", view_func=EventDetailView.as_view("event_detail"), methods=["DELETE"])
admin_bp.add_url_rule("/events/<int:event_id>/cancel", view_func=CancelEventView.as_view("cancel_event"), methods=["POST"])
admin_bp.add_url_rule("/events/<int:event_id>/draw", view_func=DrawEventView.as_view("draw_event"), methods=["POST"])
admin_bp.add_url_rule("/events/<int:event_id>/undo", view_func=UndoDrawView.as_view("undo_draw"), methods=["POST"])
admin_bp.add_url_rule("/events/<int:event_id>/history", view_func=EventHistoryView.as_view("event_history"))
admin_bp.add_url_rule(
    "/events/<int:event_id>/participants/<int:participant_id>",
    view_func=EventParticipantView.as_view("event_participant"),
    methods=["PUT", "DELETE"],
)
