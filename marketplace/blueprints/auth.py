from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from marketplace.blueprints.guards import current_account, json_body, login_required
from marketplace.database import get_db
from marketplace.services.account_service import AccountService
from marketplace.services.auth_service import AuthService

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _auth_service() -> AuthService:
    return AuthService(get_db(), mailer=current_app.extensions.get("mailer"))


@auth_bp.route("/register", methods=["POST"])
def register():
    payload = json_body()
    account = _auth_service().register(
        payload.get("username"),
        payload.get("email"),
        payload.get("password"),
        full_name=payload.get("full_name") or payload.get("fullName"),
    )
    return jsonify(
        {
            "success": True,
            "message": "Registration successful. Please check your email to verify your account.",
            "account": account.to_summary(),
        }
    ), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    payload = json_body()
    account, token = _auth_service().login(payload.get("username"), payload.get("password"))
    return jsonify({"success": True, "account": account.to_summary(), "token": token}), 200


@auth_bp.route("/verify-email", methods=["GET"])
def verify_email():
    account = _auth_service().verify_email(request.args.get("token"))
    return jsonify({"success": True, "message": "Email verified.", "account": account.to_summary()}), 200


@auth_bp.route("/resend-verification", methods=["POST"])
def resend_verification():
    _auth_service().resend_verification(json_body().get("email"))
    return jsonify(
        {"success": True, "message": "If the account exists and is unverified, a new link has been sent."}
    ), 200


@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    _auth_service().request_password_reset(json_body().get("email"))
    return jsonify(
        {"success": True, "message": "If the email is registered, a reset link has been sent."}
    ), 200


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    payload = json_body()
    _auth_service().reset_password(payload.get("token"), payload.get("password") or payload.get("newPassword"))
    return jsonify({"success": True, "message": "Password has been reset. You can now log in."}), 200


@auth_bp.route("/profile", methods=["GET"])
@login_required
def profile():
    return jsonify({"success": True, "account": AccountService.profile(current_account())}), 200
