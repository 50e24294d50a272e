from __future__ import annotations

import calendar
from datetime import date

from flask import jsonify
from werkzeug.exceptions import HTTPException


def add_months(base: date, months: int) -> date:
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp to the last day of the target month (31 Jan + 1 month -> 28/29 Feb).
    day = min(base.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def clean_text(value: object) -> str:
    return str(value or "").strip()


def json_error(kind: str, message: str, status: int, **extra: object):
    error: dict[str, object] = {"kind": kind, "message": message}
    error.update(extra)
    return jsonify({"success": False, "error": error}), status


def http_error(exc: HTTPException):
    return json_error(exc.name.replace(" ", ""), exc.description or exc.name, exc.code or 500)
