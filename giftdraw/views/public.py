from __future__ import annotations

from flask import Blueprint, jsonify
from flask.views import MethodView
from flask_wtf.csrf import generate_csrf

from ..services.events import list_open_events, public_event_summary


public_bp = Blueprint("public", __name__)


class HealthView(MethodView):
    def get(self):
        return jsonify({"status": "ok"})


class CsrfTokenView(MethodView):
    def get(self):
        return jsonify({"csrfToken": generate_csrf()})


class OpenEventsView(MethodView):
    """Active events, for people choosing an event while registering."""

    def get(self):
        return jsonify([public_event_summary(e) for e in list_open_events()])


public_bp.add_url_rule("/health", view_func=HealthView.as_view("health"))
public_bp.add_url_rule("/csrf-token", view_func=CsrfTokenView.as_view("csrf_token"))
public_bp.add_url_rule("/events", view_func=OpenEventsView.as_view("open_events"))
