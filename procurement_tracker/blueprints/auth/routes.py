"""
Authentication Routes

Provides:
- POST /auth/login     (email + password, JSON or form)
- POST /auth/logout
- GET  /auth/me        current user
- GET  /auth/csrf      CSRF token for the X-CSRFToken header
- GET  /auth/notifications   pops pending flash messages

Rules:
- Only active users may log in.
- Credentials validated via password hash.
- No sign-up or password reset here; users come from `flask seed-demo`
  or the admin tooling.
"""

import logging

from flask import Blueprint, get_flashed_messages, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from sqlalchemy.exc import SQLAlchemyError

from ...models import User

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def user_to_dict(user) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "avatar": user.avatar,
    }


# ============================================================
# LOGIN
# ============================================================

@auth_bp.route("/login", methods=["POST"])
def login():
    """Authenticate a user and start a session."""
    payload = request.get_json(silent=True) or request.form
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not email or not password:
        return jsonify({"error": "VALIDATION_ERROR", "message": "Email and password are required"}), 400

    try:
        user = User.query.filter_by(email=email).first()
    except SQLAlchemyError as exc:
        logger.error("Login lookup failed: %s", exc)
        return jsonify({"error": "BACKEND_UNAVAILABLE", "message": "User store unavailable"}), 503

    if not user or not user.check_password(password):
        return jsonify({"error": "INVALID_CREDENTIALS", "message": "Invalid email or password"}), 401

    if not user.is_active:
        return jsonify({"error": "INACTIVE_ACCOUNT", "message": "This account is inactive"}), 403

    login_user(user)
    logger.info("User %s logged in", user.email)
    return jsonify({"user": user_to_dict(user)})


# ============================================================
# LOGOUT
# ============================================================

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    """Log out the current user."""
    logout_user()
    return jsonify({"message": "Logged out"})


# ============================================================
# SESSION HELPERS
# ============================================================

@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({"user": user_to_dict(current_user)})


@auth_bp.route("/csrf", methods=["GET"])
def csrf_token():
    return jsonify({"csrfToken": generate_csrf()})


@auth_bp.route("/notifications", methods=["GET"])
def notifications():
    """Flash messages queued by store operations, oldest first (consumed)."""
    messages = get_flashed_messages(with_categories=True)
    return jsonify({"notifications": [{"category": c, "message": m} for c, m in messages]})
