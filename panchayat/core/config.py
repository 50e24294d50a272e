from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping


def _optional_int(value: str | None) -> int | None:
    raw = (value or "").strip()
    if not raw:
        return None
    return int(raw)


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///panchayat.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    WARISH_REJECTION_REMARK_MIN_LENGTH = int(os.getenv("WARISH_REJECTION_REMARK_MIN_LENGTH", "10"))
    WARISH_LINEAGE_MAX_DEPTH = _optional_int(os.getenv("WARISH_LINEAGE_MAX_DEPTH"))
    WARISH_STORAGE_TIMEOUT_SECONDS = float(os.getenv("WARISH_STORAGE_TIMEOUT_SECONDS", "10"))
    WARISH_MAX_UPLOAD_BYTES = int(os.getenv("WARISH_MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))
    WARISH_RENEWAL_MONTHS = int(os.getenv("WARISH_RENEWAL_MONTHS", "6"))
    WARISH_STORAGE_ROOT = os.getenv("WARISH_STORAGE_ROOT", "")
    WARISH_OFFICE_NAME = os.getenv("WARISH_OFFICE_NAME", "Gram Panchayat Office")
    WARISH_CERTIFICATE_FONT = os.getenv("WARISH_CERTIFICATE_FONT", "")


@dataclass(frozen=True)
class WorkflowSettings:
    """Workflow knobs read once from the Flask config at startup."""

    rejection_remark_min_length: int = 10
    lineage_max_depth: int | None = None
    storage_timeout_seconds: float = 10.0
    max_upload_bytes: int = 5 * 1024 * 1024
    renewal_months: int = 6
    office_name: str = "Gram Panchayat Office"
    certificate_font_path: str | None = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "WorkflowSettings":
        max_depth = config.get("WARISH_LINEAGE_MAX_DEPTH")
        if max_depth is not None and int(max_depth) < 1:
            raise ValueError("WARISH_LINEAGE_MAX_DEPTH must be at least 1")
        font_path = str(config.get("WARISH_CERTIFICATE_FONT") or "").strip() or None
        if font_path and not Path(font_path).is_file():
            raise ValueError(f"WARISH_CERTIFICATE_FONT points to a missing file: {font_path}")
        return cls(
            rejection_remark_min_length=int(config.get("WARISH_REJECTION_REMARK_MIN_LENGTH", 10)),
            lineage_max_depth=int(max_depth) if max_depth is not None else None,
            storage_timeout_seconds=float(config.get("WARISH_STORAGE_TIMEOUT_SECONDS", 10.0)),
            max_upload_bytes=int(config.get("WARISH_MAX_UPLOAD_BYTES", 5 * 1024 * 1024)),
            renewal_months=int(config.get("WARISH_RENEWAL_MONTHS", 6)),
            office_name=str(config.get("WARISH_OFFICE_NAME") or cls.office_name),
            certificate_font_path=font_path,
        )
