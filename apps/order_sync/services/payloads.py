"""Trigger bodies for the aggregated and daily runners (HTTP API and queued tasks share them)."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any


class PayloadError(ValueError):
    pass


def _parse_date(value: Any, name: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value or "").strip())
    except ValueError as exc:
        raise PayloadError(f"{name} must be a YYYY-MM-DD date.") from exc


def _parse_job_id(value: Any) -> uuid.UUID | None:
    if value in (None, ""):
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise PayloadError("jobId must be a UUID.") from exc


def _require_user_fields(data: dict[str, Any]) -> tuple[str, str, str]:
    user_id = str(data.get("userId") or "").strip()
    user_email = str(data.get("userEmail") or "").strip()
    user_name = str(data.get("userName") or "").strip()
    if not (user_id and user_email and user_name):
        raise PayloadError("Missing required parameters: userId, userEmail and userName are required.")
    return user_id, user_email, user_name


def parse_date_range(data: dict[str, Any]) -> tuple[date, date]:
    if not data.get("fromDate") or not data.get("toDate"):
        raise PayloadError("Missing required parameters: fromDate and toDate are required.")
    from_date = _parse_date(data["fromDate"], "fromDate")
    to_date = _parse_date(data["toDate"], "toDate")
    if from_date > to_date:
        raise PayloadError("fromDate must be on or before toDate.")
    return from_date, to_date


@dataclass
class AggregatedSyncRequest:
    job_id: uuid.UUID
    from_date: date
    to_date: date
    user_id: str
    user_email: str
    user_name: str
    resume_from: int = 0
    selected_order_numbers: list[str] = field(default_factory=list)

    @property
    def is_resume(self) -> bool:
        return self.resume_from > 0

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "AggregatedSyncRequest":
        if not isinstance(data, dict):
            raise PayloadError("Request body must be a JSON object.")
        from_date, to_date = parse_date_range(data)
        user_id, user_email, user_name = _require_user_fields(data)
        try:
            resume_from = int(data.get("resumeFrom") or 0)
        except (TypeError, ValueError) as exc:
            raise PayloadError("resumeFrom must be an integer.") from exc
        selected = data.get("selectedOrderNumbers") or []
        if not isinstance(selected, list):
            raise PayloadError("selectedOrderNumbers must be a list.")
        return cls(
            job_id=_parse_job_id(data.get("jobId")) or uuid.uuid4(),
            from_date=from_date,
            to_date=to_date,
            user_id=user_id,
            user_email=user_email,
            user_name=user_name,
            resume_from=max(0, resume_from),
            selected_order_numbers=[str(number).strip() for number in selected if str(number or "").strip()],
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "jobId": str(self.job_id),
            "fromDate": self.from_date.isoformat(),
            "toDate": self.to_date.isoformat(),
            "userId": self.user_id,
            "userEmail": self.user_email,
            "userName": self.user_name,
            "resumeFrom": self.resume_from,
        }
        if self.selected_order_numbers:
            payload["selectedOrderNumbers"] = list(self.selected_order_numbers)
        return payload


@dataclass
class DailySyncRequest:
    job_id: uuid.UUID
    from_date: date
    to_date: date
    user_id: str
    user_email: str
    user_name: str
    resume_from_day: date | None = None

    @property
    def is_resume(self) -> bool:
        return self.resume_from_day is not None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "DailySyncRequest":
        if not isinstance(data, dict):
            raise PayloadError("Request body must be a JSON object.")
        from_date, to_date = parse_date_range(data)
        user_id, user_email, user_name = _require_user_fields(data)
        resume_raw = data.get("resumeFromDay")
        return cls(
            job_id=_parse_job_id(data.get("jobId")) or uuid.uuid4(),
            from_date=from_date,
            to_date=to_date,
            user_id=user_id,
            user_email=user_email,
            user_name=user_name,
            resume_from_day=_parse_date(resume_raw, "resumeFromDay") if resume_raw else None,
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "jobId": str(self.job_id),
            "fromDate": self.from_date.isoformat(),
            "toDate": self.to_date.isoformat(),
            "userId": self.user_id,
            "userEmail": self.user_email,
            "userName": self.user_name,
        }
        if self.resume_from_day is not None:
            payload["resumeFromDay"] = self.resume_from_day.isoformat()
        return payload
