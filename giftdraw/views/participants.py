from __future__ import annotations

from flask import Blueprint, jsonify
from flask.views import MethodView
from flask_login import login_user, logout_user

from ..extensions import limiter
from ..forms import EmailForm, ParticipantLoginForm, RegistrationForm, VerificationForm
from ..policies import ParticipantRequiredMixin, current_participant
from ..services.participants import (
    login_participant,
    participant_summary,
    register_participant,
    request_login_code,
    resend_verification_code,
    update_pending_email,
    verify_participant,
)


participants_bp = Blueprint("participants", __name__, url_prefix="/participants")


class RegisterView(MethodView):
    @limiter.limit("register")
    def post(self):
        form = RegistrationForm()
        form.validate_or_raise()
        pending = register_participant(
            first_name=form.first_name.data,
            last_name=form.last_name.data,
            full_name=form.full_name.data,
            nickname=form.nickname.data,
            email=form.email.data,
            is_child=form.is_child.data,
            primary_guardian_email=form.primary_guardian_email.data,
            guardian_emails=form.guardian_emails.data or [],
        )
        return jsonify({
            "pendingId": pending.id,
            "message": "Check your email for the verification code.",
        }), 201


class VerifyView(MethodView):
    @limiter.limit("verify")
    def post(self, pending_id: int):
        form = VerificationForm()
        form.validate_or_raise()
        participant = verify_participant(pending_id, form.code.data)
        login_user(participant)
        return jsonify(participant_summary(participant))


class ResendCodeView(MethodView):
    @limiter.limit("verify")
    def post(self, pending_id: int):
        resend_verification_code(pending_id)
        return jsonify({"message": "A new code is on its way."})


class PendingEmailView(MethodView):
    @limiter.limit("verify")
    def put(self, pending_id: int):
        form = EmailForm()
        form.validate_or_raise()
        pending = update_pending_email(pending_id, form.email.data)
        return jsonify({
            "pendingId": pending.id,
            "message": "Check the new address for your verification code.",
        })


class RequestLoginCodeView(MethodView):
    @limiter.limit("login")
    def post(self):
        form = EmailForm()
        form.validate_or_raise()
        request_login_code(form.email.data)
        return jsonify({"message": "A sign-in code is on its way."})


class LoginView(MethodView):
    @limiter.limit("login")
    def post(self):
        form = ParticipantLoginForm()
        form.validate_or_raise()
        participant = login_participant(form.email.data, form.code.data)
        login_user(participant)
        return jsonify(participant_summary(participant))


class MeView(ParticipantRequiredMixin):
    def get(self):
        return jsonify(participant_summary(current_participant()))


class LogoutView(MethodView):
    def post(self):
        logout_user()
        return "", 204


participants_bp.add_url_rule("/register", view_func=RegisterView.as_view("register"), methods=["POST"])
participants_bp.add_url_rule("/<int:pending_id>/verify", view_func=VerifyView.as_view("verify"), methods=["POST"])
participants_bp.add_url_rule(
    "/<int:pending_id>/resend-code", view_func=ResendCodeView.as_view("resend_code"), methods=["POST"]
)
participants_bp.add_url_rule("/<int:pending_id>/email", view_func=PendingEmailView.as_view("pending_email"), methods=["PUT"])
participants_bp.add_url_rule(
    "/request-login-code", view_func=RequestLoginCodeView.as_view("request_login_code"), methods=["POST"]
)
participants_bp.add_url_rule("/login", view_func=LoginView.as_view("login"), methods=["POST"])
participants_bp.add_url_rule("/me", view_func=MeView.as_view("me"))
participants_bp.add_url_rule("/logout", view_func=LogoutView.as_view("logout"), methods=["POST"])
