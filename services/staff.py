"""Staff records and daily attendance."""

from __future__ import annotations

import calendar
import datetime
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash

from extensions import db
from models import (
    ALL_PERMISSIONS,
    VALID_ATTENDANCE_STATUSES,
    Permission,
    Staff,
    StaffAttendance,
    permission_names,
    permissions_from_names,
)
from services.audit import log_action
from services.auth import MIN_PASSWORD_LENGTH
from services.errors import ValidationError
from services.i18n import Msg
from utils import money, money_str, parse_date, safe_decimal, utc_now

logger = logging.getLogger(__name__)

CHECKED_IN_STATUSES = {"present", "half-day"}


def _parse_permissions(raw) -> Permission:
    if isinstance(raw, bool):
        raise ValidationError(detail="permissions must be a list of names or a flag value")
    if isinstance(raw, int):
        if not 0 <= raw <= ALL_PERMISSIONS.value:
            raise ValidationError(detail=f"permission value out of range: {raw}")
        return Permission(raw)
    try:
        return permissions_from_names(raw)
    except KeyError as exc:
        raise ValidationError(detail=f"unknown permission {exc.args[0]!r}")


def apply_staff_fields(staff: Staff, data: dict) -> Staff:
    """Partial update of a staff record from request data."""
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError(detail="name is required")
        staff.name = name
    for field in ("phone", "role"):
        if field in data:
            setattr(staff, field, (data.get(field) or "").strip() or None)
    if "salary" in data:
        salary = safe_decimal(data["salary"], default="-1")
        if salary < 0:
            raise ValidationError(detail="salary must be a non-negative number")
        staff.salary = money(salary)
    if "join_date" in data:
        staff.join_date = parse_date(data.get("join_date"))
    if "is_active" in data:
        staff.is_active = bool(data["is_active"])
    if "permissions" in data:
        staff.permissions = _parse_permissions(data["permissions"]).value
    if data.get("username"):
        username = data["username"].strip()
        clash = Staff.query.filter(Staff.username == username, Staff.id != staff.id).first()
        if clash:
            raise ValidationError(Msg.USERNAME_TAKEN)
        staff.username = username
    if data.get("password"):
        if len(data["password"]) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                detail=f"password must have at least {MIN_PASSWORD_LENGTH} characters"
            )
        staff.password_hash = generate_password_hash(data["password"])
    return staff


def create_staff(user_id: int, data: dict) -> Staff:
    if not (data.get("name") or "").strip():
        raise ValidationError(detail="name is required")
    staff = Staff(user_id=user_id, permissions=Permission.BILLING.value)
    apply_staff_fields(staff, data)
    if staff.join_date is None:
        staff.join_date = datetime.date.today()
    db.session.add(staff)
    db.session.flush()
    log_action("create", "staff", staff.id, staff.name, user_id=user_id)
    db.session.commit()
    return staff


def mark_attendance(
    staff: Staff,
    status: str,
    day: Optional[datetime.date] = None,
) -> StaffAttendance:
    """Record *status* for *staff* on *day*; one row per staff per day.

    Marking again on the same day overwrites the status.  Present and
    half-day stamp the check-in time if it is not set yet; absent clears
    both times.
    """
    if status not in VALID_ATTENDANCE_STATUSES:
        raise ValidationError(
            detail=f"status must be one of {', '.join(sorted(VALID_ATTENDANCE_STATUSES))}"
        )
    day = day or datetime.date.today()
    record = StaffAttendance.query.filter_by(staff_id=staff.id, date=day).first()
    if record is None:
        record = StaffAttendance(user_id=staff.user_id, staff_id=staff.id, date=day)
        db.session.add(record)
    record.status = status
    if status in CHECKED_IN_STATUSES:
        if record.check_in is None:
            record.check_in = utc_now()
    else:
        record.check_in = None
        record.check_out = None
    try:
        db.session.commit()
    except IntegrityError:
        # Another request created the day's row first
        db.session.rollback()
        record = StaffAttendance.query.filter_by(staff_id=staff.id, date=day).one()
        record.status = status
        db.session.commit()
    logger.info("Attendance %s for staff %s on %s", status, staff.id, day)
    return record


def check_out(staff: Staff, day: Optional[datetime.date] = None) -> StaffAttendance:
    day = day or datetime.date.today()
    record = StaffAttendance.query.filter_by(staff_id=staff.id, date=day).first()
    if record is None or record.check_in is None:
        raise ValidationError(detail="staff member has not checked in")
    record.check_out = utc_now()
    db.session.commit()
    return record


def daily_attendance(user_id: int, day: datetime.date) -> list[dict]:
    """Every active staff member with their status for *day* (None if unmarked)."""
    records = {
        r.staff_id: r
        for r in StaffAttendance.query.filter_by(user_id=user_id, date=day).all()
    }
    result = []
    for staff in Staff.query.filter_by(user_id=user_id, is_active=True).order_by(Staff.name):
        record = records.get(staff.id)
        result.append(
            {
                "staff_id": staff.id,
                "name": staff.name,
                "status": record.status if record else None,
                "check_in": record.check_in.isoformat() if record and record.check_in else None,
                "check_out": record.check_out.isoformat() if record and record.check_out else None,
            }
        )
    return result


def monthly_summary(staff: Staff, year: int, month: int) -> dict:
    """Attendance counts for one month plus payable days and salary due."""
    days_in_month = calendar.monthrange(year, month)[1]
    start = datetime.date(year, month, 1)
    end = datetime.date(year, month, days_in_month)
    counts = {status: 0 for status in VALID_ATTENDANCE_STATUSES}
    for record in staff.attendance.filter(
        StaffAttendance.date >= start, StaffAttendance.date <= end
    ):
        counts[record.status] = counts.get(record.status, 0) + 1

    payable = Decimal(counts["present"]) + Decimal(counts["half-day"]) / 2
    salary = money(staff.salary or 0)
    return {
        "staff_id": staff.id,
        "year": year,
        "month": month,
        "present": counts["present"],
        "half_day": counts["half-day"],
        "absent": counts["absent"],
        "payable_days": str(payable),
        "salary_due": money_str(salary * payable / days_in_month),
    }


def staff_to_dict(staff: Staff) -> dict:
    return {
        "id": staff.id,
        "name": staff.name,
        "phone": staff.phone,
        "role": staff.role,
        "salary": money_str(staff.salary),
        "username": staff.username,
        "permissions": permission_names(staff.permission_flags),
        "is_active": bool(staff.is_active),
        "join_date": staff.join_date.isoformat() if staff.join_date else None,
    }
