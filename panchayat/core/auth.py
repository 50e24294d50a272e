from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash

from panchayat.core.models import StaffUser
from panchayat.core.utils import json_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def staff_payload(user: StaffUser) -> dict[str, object]:
    return {
        "id": user.id,
        "staff_code": user.staff_code,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role,
    }


@auth_bp.post("/login")
def login_post():
    data = request.get_json(silent=True) or request.form
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    user = StaffUser.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        logger.warning("Failed login for %s", email or "<blank>")
        return json_error("Unauthorized", "Invalid credentials", 401)
    if not login_user(user):
        return json_error("Forbidden", "Account is disabled", 403)
    return jsonify({"success": True, "data": staff_payload(user)})


@auth_bp.get("/me")
@login_required
def me():
    return jsonify({"success": True, "data": staff_payload(current_user)})


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"success": True, "data": None})
