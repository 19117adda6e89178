"""Profile bootstrap service.

Resolves the caller's subscription plan, creating a free profile on first
sight. Race-safe: a concurrent insert of the same profile is recovered by
re-reading the winner's row.
"""

from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatroute.db.models import Profile
from chatroute.db.session import transaction
from chatroute.logging import get_logger
from chatroute.services.routing import Plan, normalize_plan

logger = get_logger(__name__)

DEFAULT_PLAN = Plan.FREE


def ensure_profile(db: Session, user_id: UUID) -> Plan:
    """Ensure a profile exists for user_id and return its plan.

    Args:
        db: Database session.
        user_id: The user's ID (from JWT sub claim).

    Returns:
        The caller's plan; unknown stored values normalize to free.
    """
    profile = db.get(Profile, user_id)
    if profile is not None:
        return normalize_plan(profile.subscription_plan)

    try:
        with transaction(db):
            db.add(Profile(user_id=user_id, subscription_plan=DEFAULT_PLAN.value))
        logger.info("profile.created", plan=DEFAULT_PLAN.value)
        return DEFAULT_PLAN
    except IntegrityError:
        # Lost race: another request created it
        profile = db.get(Profile, user_id)
        if profile is None:
            raise
        return normalize_plan(profile.subscription_plan)


def set_plan(db: Session, user_id: UUID, plan: str | Plan) -> Plan:
    """Set a user's plan, creating the profile if needed."""
    plan = normalize_plan(plan)
    with transaction(db):
        profile = db.get(Profile, user_id)
        if profile is None:
            db.add(Profile(user_id=user_id, subscription_plan=plan.value))
        else:
            profile.subscription_plan = plan.value
    return plan
