"""Chat coordinator for POST /chat.

Flow:
1. Validate the message
2. Route (classify + admission); a denied route raises before any I/O
3. Resolve or create the session
4. Serve from the response cache, or build the prompt and invoke the chain
5. Append user + assistant messages atomically
6. Cache successful fresh answers
7. Evict the owner's cached session views

Sync database and redis calls run in the threadpool; only the provider
call is awaited on the loop.
"""

from uuid import UUID

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from chatroute.errors import ApiError, ApiErrorCode, InvalidRequestError, UpgradeRequiredError
from chatroute.logging import get_logger, set_session_id
from chatroute.schemas.chat import ChatReply
from chatroute.services import chat_sessions
from chatroute.services.cache_invalidation import invalidate_session_views
from chatroute.services.llm.invoker import ModelInvoker
from chatroute.services.llm.prompt import (
    MAX_PROMPT_CHARS,
    PromptTooLargeError,
    fit_history,
    render_prompt,
    system_prompt_for,
    validate_prompt_size,
)
from chatroute.services.llm.types import Turn
from chatroute.services.response_cache import (
    CHAT_CACHE_TTL_SECONDS,
    get_cached_answer,
    store_answer,
)
from chatroute.services.routing import Plan, RouteDecision, route_query

logger = get_logger(__name__)

MAX_MESSAGE_CHARS = 10_000


def validate_message(message: str | None) -> str:
    """Stripped message text. Runs before any session is created or stream opened.

    Raises:
        InvalidRequestError(E_MESSAGE_REQUIRED): Missing or blank text.
        InvalidRequestError(E_INVALID_REQUEST): Longer than MAX_MESSAGE_CHARS.
    """
    if not isinstance(message, str) or not message.strip():
        raise InvalidRequestError(ApiErrorCode.E_MESSAGE_REQUIRED, "Message is required")
    message = message.strip()
    try:
        validate_prompt_size([Turn(role="user", content=message)], max_chars=MAX_MESSAGE_CHARS)
    except PromptTooLargeError as e:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST,
            f"Message too long. Maximum {MAX_MESSAGE_CHARS} characters allowed.",
        ) from e
    return message


def decide(message: str, plan: Plan | str) -> RouteDecision:
    """Route a message; any failure here is fatal for the request."""
    try:
        return route_query(message, plan)
    except Exception as e:
        logger.exception("chat.route.failed", error_type=type(e).__name__)
        raise ApiError(ApiErrorCode.E_ROUTING_FAILED, "Failed to route message") from e


def build_prompt(
    db: Session, session_id: UUID, is_new: bool, message: str, decision: RouteDecision
) -> list[Turn]:
    """Prior turns (existing sessions only) plus the current message.

    Older history is dropped to keep the prompt within MAX_PROMPT_CHARS;
    the message itself was bounded by validate_message.
    """
    system_prompt = system_prompt_for(decision.intent.value)
    history = [] if is_new else chat_sessions.load_history(db, session_id)
    budget = MAX_PROMPT_CHARS - len(system_prompt) - len(message)
    return render_prompt(message, fit_history(history, budget), system_prompt)


async def send_chat(
    db: Session,
    *,
    owner_id: UUID,
    plan: Plan | str,
    message: str | None,
    session_id: str | None,
    invoker: ModelInvoker,
    redis_client=None,
    cache_ttl_s: int = CHAT_CACHE_TTL_SECONDS,
) -> ChatReply:
    """Answer one message and persist the exchange.

    Provider failures are not errors here: the fixed user message for the
    failure kind is returned as output (and persisted, never cached).

    Raises:
        InvalidRequestError(E_MESSAGE_REQUIRED): Blank message.
        InvalidRequestError(E_INVALID_REQUEST): Message over MAX_MESSAGE_CHARS.
        UpgradeRequiredError: The plan does not admit the intent.
        NotFoundError(E_SESSION_NOT_FOUND): Unknown or foreign session id.
        PersistenceError: The exchange could not be saved.
    """
    message = validate_message(message)
    decision = decide(message, plan)
    if not decision.allowed:
        logger.info(
            "chat.route.denied",
            intent=decision.intent.value,
            plan=decision.plan.value,
            required_plan=decision.required_plan.value,
        )
        raise UpgradeRequiredError(required_plan=decision.required_plan.value)

    session, is_new = await run_in_threadpool(
        chat_sessions.resolve_session, db, owner_id, session_id
    )
    set_session_id(str(session.id))
    if is_new:
        await run_in_threadpool(invalidate_session_views, redis_client, owner_id, reason="create")

    cache = await run_in_threadpool(get_cached_answer, redis_client, owner_id, message)
    if cache.hit:
        output = cache.value.output
        model = cache.value.model
        ok = True
        downgraded = decision.downgraded or model != decision.primary_model.model_id
        usage_tokens = None
        logger.info("chat.cache.hit", model=model)
    else:
        turns = await run_in_threadpool(build_prompt, db, session.id, is_new, message, decision)
        result = await invoker.invoke(decision.targets, turns)
        output = result.text
        ok = result.ok
        model = (result.effective_model or decision.primary_model).model_id
        downgraded = decision.downgraded or result.fallback_used
        usage_tokens = result.usage.completion_tokens if result.usage else None
        if not ok:
            logger.warning("chat.invoke.failed", error_kind=result.error_kind.value)

    appended = await run_in_threadpool(
        chat_sessions.append_exchange,
        db,
        owner_id,
        session.id,
        user_content=message,
        assistant_content=output,
        model_used=model if ok else None,
        is_new=is_new,
        assistant_tokens=usage_tokens,
    )

    if ok and not cache.hit:
        await run_in_threadpool(
            store_answer,
            redis_client,
            owner_id,
            message,
            ok=True,
            output=output,
            model=model,
            session_id=session.id,
            ttl_seconds=cache_ttl_s,
        )
    await run_in_threadpool(invalidate_session_views, redis_client, owner_id, reason="append")

    return ChatReply(
        output=output,
        session_id=appended.session.id,
        model=model,
        downgraded=downgraded,
        is_new_chat=is_new,
        cached=cache.hit,
        routing=decision.to_dict(),
    )
