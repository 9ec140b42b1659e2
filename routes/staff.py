"""Staff and attendance routes (Pro plan)."""

import datetime

from flask import Blueprint, jsonify, request

from extensions import db
from models import Staff
from services.audit import log_action
from services.auth import current_language, owner_only
from services.errors import ValidationError
from services.i18n import Msg, translate
from services.ownership import owner_get_or_404, owner_query, require_owner
from services.staff import (
    apply_staff_fields,
    check_out,
    create_staff,
    daily_attendance,
    mark_attendance,
    monthly_summary,
    staff_to_dict,
)
from services.subscription import feature_required
from utils import parse_date

staff_bp = Blueprint("staff", __name__, url_prefix="/api/staff")


def _day_arg(raw):
    if not raw:
        return datetime.date.today()
    day = parse_date(raw)
    if day is None:
        raise ValidationError(detail="date must be YYYY-MM-DD")
    return day


@staff_bp.route("", methods=["GET"])
@owner_only
@feature_required("staff")
def list_staff():
    members = owner_query(Staff).order_by(Staff.name).all()
    return jsonify([staff_to_dict(s) for s in members])


@staff_bp.route("", methods=["POST"])
@owner_only
@feature_required("staff")
def add_staff():
    data = request.get_json(silent=True) or {}
    staff = create_staff(require_owner(), data)
    return jsonify(staff_to_dict(staff)), 201


@staff_bp.route("/<int:staff_id>", methods=["PATCH"])
@owner_only
@feature_required("staff")
def edit_staff(staff_id: int):
    staff = owner_get_or_404(Staff, staff_id)
    data = request.get_json(silent=True) or {}
    apply_staff_fields(staff, data)
    log_action("edit", "staff", staff.id, ", ".join(sorted(k for k in data if k != "password")))
    db.session.commit()
    return jsonify(staff_to_dict(staff))


@staff_bp.route("/attendance", methods=["GET"])
@owner_only
@feature_required("staff")
def attendance_for_day():
    day = _day_arg(request.args.get("date"))
    return jsonify({"date": day.isoformat(), "staff": daily_attendance(require_owner(), day)})


@staff_bp.route("/<int:staff_id>/attendance", methods=["POST"])
@owner_only
@feature_required("staff")
def mark_staff_attendance(staff_id: int):
    staff = owner_get_or_404(Staff, staff_id)
    data = request.get_json(silent=True) or {}
    record = mark_attendance(staff, data.get("status", ""), _day_arg(data.get("date")))
    return jsonify(
        {
            "staff_id": staff.id,
            "date": record.date.isoformat(),
            "status": record.status,
            "check_in": record.check_in.isoformat() if record.check_in else None,
            "message": translate(Msg.ATTENDANCE_MARKED, current_language()),
        }
    )


@staff_bp.route("/<int:staff_id>/check-out", methods=["POST"])
@owner_only
@feature_required("staff")
def staff_check_out(staff_id: int):
    staff = owner_get_or_404(Staff, staff_id)
    data = request.get_json(silent=True) or {}
    record = check_out(staff, _day_arg(data.get("date")))
    return jsonify(
        {
            "staff_id": staff.id,
            "date": record.date.isoformat(),
            "check_out": record.check_out.isoformat(),
        }
    )


@staff_bp.route("/<int:staff_id>/attendance/summary", methods=["GET"])
@owner_only
@feature_required("staff")
def attendance_summary(staff_id: int):
    staff = owner_get_or_404(Staff, staff_id)
    raw = request.args.get("month") or datetime.date.today().strftime("%Y-%m")
    try:
        month_start = datetime.datetime.strptime(raw, "%Y-%m").date()
    except ValueError:
        raise ValidationError(detail="month must be YYYY-MM")
    return jsonify(monthly_summary(staff, month_start.year, month_start.month))
