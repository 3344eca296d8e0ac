"""Validation of submissions, approval comments and rejection reasons."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError
from .states import RequestType

REASON_MIN_LENGTH = 10
REASON_MAX_LENGTH = 500
ADDRESS_MIN_LENGTH = 10
ADDRESS_MAX_LENGTH = 200
COMMENT_MAX_LENGTH = 200
REJECTION_REASON_MIN_LENGTH = 5
REJECTION_REASON_MAX_LENGTH = 200
ATTENDANCE_MIN, ATTENDANCE_MAX = 0, 100
SCORE_MIN, SCORE_MAX = 0, 10


def _as_naive_utc(value: datetime) -> datetime:
    """Naive values are taken as UTC; aware ones are converted to it."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class OutpassSchedule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    initial_time: datetime
    expected_return_time: datetime

    @field_validator("initial_time", "expected_return_time", mode="after")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return _as_naive_utc(value)

    @model_validator(mode="after")
    def _return_after_start(self):
        if self.expected_return_time <= self.initial_time:
            raise ValueError("Expected return time must be after initial time")
        return self


class LeaveSchedule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    journey_date: datetime
    return_date: datetime

    @field_validator("journey_date", "return_date", mode="after")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return _as_naive_utc(value)

    @model_validator(mode="after")
    def _return_after_journey(self):
        if self.return_date <= self.journey_date:
            raise ValueError("Return date must be after journey date")
        return self


class ApproverEmails(BaseModel):
    model_config = ConfigDict(extra="forbid")

    counsellor: EmailStr
    warden: EmailStr
    hod: Optional[EmailStr] = None

    @field_validator("counsellor", "warden", "hod")
    @classmethod
    def _lowercase(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else value


class RequestSubmission(BaseModel):
    """A validated leave/outpass submission."""

    request_type: RequestType
    schedule: Union[OutpassSchedule, LeaveSchedule]
    reason: str = Field(min_length=REASON_MIN_LENGTH, max_length=REASON_MAX_LENGTH)
    address: str = Field(min_length=ADDRESS_MIN_LENGTH, max_length=ADDRESS_MAX_LENGTH)
    attendance_percent: float = Field(ge=ATTENDANCE_MIN, le=ATTENDANCE_MAX)
    last_semester_score: float = Field(ge=SCORE_MIN, le=SCORE_MAX)
    approver_emails: ApproverEmails

    @field_validator("reason", "address", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _matches_type(self):
        if self.request_type is RequestType.OUTPASS:
            if not isinstance(self.schedule, OutpassSchedule):
                raise ValueError("Outpass requests need initial_time and expected_return_time")
        else:
            if not isinstance(self.schedule, LeaveSchedule):
                raise ValueError("Leave requests need journey_date and return_date")
            if not self.approver_emails.hod:
                raise ValueError("HOD email is required for leave applications")
        return self


def _format_errors(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "__root__",
            "message": err["msg"],
        }
        for err in exc.errors()
    ]


def parse_submission(
    request_type: Union[RequestType, str],
    schedule: Mapping[str, Any],
    reason: str,
    address: str,
    attendance: float,
    score: float,
    approver_emails: Mapping[str, Any],
) -> RequestSubmission:
    """
    Validate raw submission fields.

    Raises:
        ValidationError: With one entry per offending field
    """
    try:
        return RequestSubmission.model_validate({
            "request_type": request_type,
            "schedule": dict(schedule or {}),
            "reason": reason,
            "address": address,
            "attendance_percent": attendance,
            "last_semester_score": score,
            "approver_emails": dict(approver_emails or {}),
        })
    except PydanticValidationError as e:
        raise ValidationError("Validation failed", errors=_format_errors(e)) from e


def validate_comment(comment: Optional[str]) -> Optional[str]:
    """Normalize an optional approval comment."""
    if comment is None:
        return None
    comment = comment.strip()
    if len(comment) > COMMENT_MAX_LENGTH:
        raise ValidationError(
            f"Comments cannot exceed {COMMENT_MAX_LENGTH} characters",
            errors=[{"field": "comment", "message": "too long"}],
        )
    return comment or None


def validate_rejection_reason(reason: Optional[str]) -> str:
    """A rejection needs a reason between 5 and 200 characters."""
    reason = (reason or "").strip()
    if not REJECTION_REASON_MIN_LENGTH <= len(reason) <= REJECTION_REASON_MAX_LENGTH:
        raise ValidationError(
            f"Rejection reason must be between {REJECTION_REASON_MIN_LENGTH} "
            f"and {REJECTION_REASON_MAX_LENGTH} characters",
            errors=[{"field": "reason", "message": "invalid length"}],
        )
    return reason
