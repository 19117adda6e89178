"""Legacy routing endpoint.

POST /route classifies a message for a plan without invoking any model and
answers in the shape older clients expect:
{intent, contentType, difficulty, model, endpoint, allowed, downgraded, plan}
"""

from fastapi import APIRouter

from chatroute.errors import ApiErrorCode, InvalidRequestError
from chatroute.schemas.chat import RouteRequest
from chatroute.services.chat import decide

router = APIRouter(tags=["routing"])


@router.post("/route")
def route_message(body: RouteRequest) -> dict:
    """Dry-run routing decision.

    Errors:
        E_INVALID_REQUEST (400): userMessage or subscriptionPlan missing.
    """
    if not body.user_message or not body.subscription_plan:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, "userMessage and subscriptionPlan are required"
        )
    return decide(body.user_message, body.subscription_plan).to_legacy()
