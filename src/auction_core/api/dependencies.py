"""Shared FastAPI dependencies and outcome-to-HTTP mapping."""
import logging
from typing import NoReturn, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from auction_core import crud, models
from auction_core.database import get_db
from auction_core.outcomes import Outcome, OutcomeKind

logger = logging.getLogger("auction-core.api")

OUTCOME_STATUS_CODES: dict[OutcomeKind, int] = {
    OutcomeKind.DENIED: 403,
    OutcomeKind.VALIDATION: 422,
    OutcomeKind.CONFLICT: 409,
    OutcomeKind.NOT_FOUND: 404,
}


def get_current_user(
    x_user_id: Optional[UUID] = Header(None, description="Authenticated user ID"),
    db: Session = Depends(get_db),
) -> models.User:
    """
    Resolve the caller from the ``X-User-Id`` header.

    Session issuance happens upstream; this service trusts the header.
    """
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")

    user = crud.get_user(db, x_user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Unknown or inactive user")
    return user


def raise_for_outcome(outcome: Outcome) -> NoReturn:
    """Convert a failed outcome to an HTTPException."""
    status_code = OUTCOME_STATUS_CODES.get(outcome.kind, 400)
    detail = {"kind": outcome.kind.value, "reason": outcome.reason}
    if outcome.details:
        detail.update(jsonable_encoder(outcome.details))
    raise HTTPException(status_code=status_code, detail=detail)


def unwrap(outcome: Outcome):
    """Return the outcome's value, or raise the matching HTTP error."""
    if not outcome.ok:
        raise_for_outcome(outcome)
    return outcome.value


def require_roles(*roles: models.Role):
    """Dependency factory: the caller must hold one of ``roles``."""

    def _check(current_user: models.User = Depends(get_current_user)) -> models.User:
        if current_user.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient role for this action")
        return current_user

    return _check
