from flask import Blueprint, jsonify, request
from sqlalchemy import select

from app.extensions import db
from ...models import STAFF_ROLES, Staff
from ...utils.auth_utils import token_required

staff_bp = Blueprint("staff", __name__, url_prefix="/api/staff")


def serialize_staff(member):
    return {
        "id": member.id,
        "user_id": member.user_id,
        "name": member.name,
        "email": member.email,
        "phone": member.phone,
        "role": member.role,
        "is_active": bool(member.is_active),
        "max_daily_appointments": member.max_daily_appointments,
    }


@staff_bp.route("", methods=["GET"])
@token_required()
def list_staff():
    """
    GET /api/staff?role=groomer
    Purpose: List active staff members, optionally only one role.

    Behavior:
    - role must be one of STAFF_ROLES, otherwise 400.
    - Inactive staff are included only with include_inactive=1.
    """
    role = request.args.get("role")
    stmt = select(Staff).order_by(Staff.name)

    if role:
        if role not in STAFF_ROLES:
            return jsonify({"status": "error", "message": f"Unknown role '{role}'"}), 400
        stmt = stmt.where(Staff.role == role)

    if request.args.get("include_inactive") not in ("1", "true", "True"):
        stmt = stmt.where(Staff.is_active.is_(True))

    return jsonify([serialize_staff(m) for m in db.session.scalars(stmt).all()])


@staff_bp.route("/<int:staff_id>", methods=["GET"])
@token_required()
def get_staff_member(staff_id):
    member = db.session.get(Staff, staff_id)
    if not member:
        return jsonify({"status": "error", "message": "Staff member not found"}), 404
    return jsonify(serialize_staff(member))
