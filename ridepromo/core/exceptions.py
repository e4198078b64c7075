from fastapi import status
from typing import Any, Dict, List, Optional
import enum


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    EXPIRED = "expired"
    INACTIVE = "inactive"
    INELIGIBLE_RULE = "ineligible_rule"
    LIMIT_REACHED = "limit_reached"
    CONFLICT_ON_COMMIT = "conflict_on_commit"


class CouponError(APIError):
    """An expected, user-facing rejection of a coupon request.

    ``code`` names the specific check that failed and ``detail`` holds the
    values the message was rendered from, so callers can branch on them
    without parsing ``message``.
    """

    kind: ErrorKind = ErrorKind.INVALID_INPUT
    default_status = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.detail = detail or {}
        super().__init__(
            status_code=status_code or self.default_status,
            message=message,
            errors=[{"kind": self.kind.value, "code": code, "detail": self.detail}],
        )


class NotFound(CouponError):
    kind = ErrorKind.NOT_FOUND
    default_status = status.HTTP_404_NOT_FOUND


class InvalidInput(CouponError):
    kind = ErrorKind.INVALID_INPUT


class Expired(CouponError):
    kind = ErrorKind.EXPIRED


class Inactive(CouponError):
    kind = ErrorKind.INACTIVE


class IneligibleRule(CouponError):
    kind = ErrorKind.INELIGIBLE_RULE


class LimitReached(CouponError):
    kind = ErrorKind.LIMIT_REACHED
    default_status = status.HTTP_409_CONFLICT


class ConflictOnCommit(CouponError):
    kind = ErrorKind.CONFLICT_ON_COMMIT
    default_status = status.HTTP_409_CONFLICT


ERRORS_BY_KIND = {
    error_class.kind: error_class
    for error_class in (NotFound, InvalidInput, Expired, Inactive, IneligibleRule, LimitReached, ConflictOnCommit)
}
