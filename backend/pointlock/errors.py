"""
backend/pointlock/errors.py

Purpose:
    Typed service errors raised by the slip lifecycle and the wallet ledger.
    Each error is an HTTPException so FastAPI renders it directly; the extra
    machine-readable ``code`` is added to the body by the handler in main.py.

Dependencies:
    - fastapi
"""

from fastapi import HTTPException, status

# Machine-readable codes surfaced to clients.
SLIP_NOT_FOUND = "SLIP_001"
SLIP_ALREADY_LOCKED = "SLIP_002"
INVALID_PICK_COUNT = "SLIP_003"
EVENT_ALREADY_STARTED = "SLIP_004"
MIN_SPEND_NOT_MET = "SLIP_005"
TIER_LOCKED = "SLIP_006"
EVENT_NOT_FOUND = "EVENT_001"
WALLET_NOT_FOUND = "WALLET_001"
WALLET_CONFLICT = "WALLET_002"
INSUFFICIENT_BALANCE = "WALLET_003"
TRANSACTION_NOT_FOUND = "WALLET_004"
USER_NOT_FOUND = "USER_001"
INVALID_ODDS = "ODDS_001"


class AppError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "INTERNAL"

    def __init__(self, detail: str, code: str | None = None, **context):
        super().__init__(status_code=self.status_code, detail=detail)
        self.code = code or self.default_code
        self.context = context


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "VALIDATION"


class BadRequestError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "BAD_REQUEST"


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "FORBIDDEN"


class TierLockedError(ForbiddenError):
    default_code = TIER_LOCKED

    def __init__(self, required_tier: str, user_tier: str, market_type: str | None = None):
        detail = f"{required_tier} tier required for this pick (current tier: {user_tier})."
        if market_type:
            detail = f"{required_tier} tier required for {market_type} picks (current tier: {user_tier})."
        super().__init__(
            detail,
            required_tier=required_tier,
            user_tier=user_tier,
            market_type=market_type,
        )


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "CONFLICT"
