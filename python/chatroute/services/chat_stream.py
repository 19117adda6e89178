"""Streaming chat session: async generator of SSE frames for POST /chat/stream.

Every frame is `data: <json>\\n\\n` with a {"type", "data"} payload:
- routing: the RouteDecision, always first
- session: {sessionId, isNewChat} (allowed requests only)
- model_selected: {model, downgraded, cached}, before the first delta
- delta: text chunk
- error: {message, kind} for provider/persistence failures,
         {message, upgradeRequired, requiredPlan} for a denied route
The literal `data: [DONE]` is always the last frame.

Disconnect handling: when the client goes away the ASGI server stops
iterating and the generator is closed; the invoker's provider stream is
closed with it and nothing is persisted for the aborted exchange.

Sync DB and redis access uses run_in_threadpool (starlette).
"""

import asyncio
import json
import time
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from uuid import UUID

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from chatroute.errors import ApiError, PersistenceError
from chatroute.logging import get_logger, set_session_id
from chatroute.services import chat_sessions
from chatroute.services.cache_invalidation import invalidate_session_views
from chatroute.services.chat import build_prompt, decide
from chatroute.services.llm.errors import LLMErrorClass, user_message_for
from chatroute.services.llm.invoker import ModelInvoker
from chatroute.services.response_cache import (
    CHAT_CACHE_TTL_SECONDS,
    get_cached_answer,
    store_answer,
)
from chatroute.services.routing import Plan

logger = get_logger(__name__)

SSE_DONE = "data: [DONE]\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse_event(event_type: str, data) -> str:
    """Format one typed event as an SSE data frame."""
    return f"data: {json.dumps({'type': event_type, 'data': data})}\n\n"


async def stream_chat(
    db_factory: Callable[[], Session],
    *,
    owner_id: UUID,
    plan: Plan | str,
    message: str,
    session_id: str | None,
    invoker: ModelInvoker,
    redis_client=None,
    cache_ttl_s: int = CHAT_CACHE_TTL_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames for one message.

    The message must already be validated; the route rejects blank input
    with a JSON 400 before the stream opens.
    """
    db = db_factory()
    start_time = time.monotonic()
    full_content = ""
    status = "complete"

    try:
        decision = decide(message, plan)
        yield format_sse_event("routing", decision.to_dict())

        if not decision.allowed:
            status = "denied"
            yield format_sse_event(
                "error",
                {
                    "message": "This feature requires a higher subscription plan",
                    "upgradeRequired": True,
                    "requiredPlan": decision.required_plan.value,
                },
            )
            yield SSE_DONE
            return

        session, is_new = await run_in_threadpool(
            chat_sessions.resolve_session, db, owner_id, session_id
        )
        set_session_id(str(session.id))
        if is_new:
            await run_in_threadpool(
                invalidate_session_views, redis_client, owner_id, reason="create"
            )
        yield format_sse_event("session", {"sessionId": str(session.id), "isNewChat": is_new})

        ok = False
        served_model = None
        usage_tokens = None
        cache = await run_in_threadpool(get_cached_answer, redis_client, owner_id, message)

        if cache.hit:
            ok = True
            served_model = cache.value.model
            full_content = cache.value.output
            yield format_sse_event(
                "model_selected",
                {
                    "model": served_model,
                    "downgraded": decision.downgraded
                    or served_model != decision.primary_model.model_id,
                    "cached": True,
                },
            )
            yield format_sse_event("delta", full_content)
        else:
            turns = await run_in_threadpool(
                build_prompt, db, session.id, is_new, message, decision
            )
            error_kind: LLMErrorClass | None = None
            async with aclosing(invoker.stream(decision.targets, turns)) as events:
                async for event in events:
                    if event.kind == "model":
                        served_model = event.target.model_id
                        yield format_sse_event(
                            "model_selected",
                            {
                                "model": served_model,
                                "downgraded": decision.downgraded or event.fallback_used,
                                "cached": False,
                            },
                        )
                    elif event.kind == "delta":
                        full_content += event.text
                        yield format_sse_event("delta", event.text)
                    elif event.kind == "done":
                        ok = True
                        usage_tokens = event.usage.completion_tokens if event.usage else None
                    else:
                        error_kind = event.error_kind
                        yield format_sse_event(
                            "error", {"message": event.text, "kind": error_kind.value}
                        )

            if not ok:
                status = "error"
                if not full_content:
                    # Nothing was delivered: persist the apology the client saw
                    full_content = user_message_for(error_kind or LLMErrorClass.UNKNOWN)
                    served_model = None

        try:
            await run_in_threadpool(
                chat_sessions.append_exchange,
                db,
                owner_id,
                session.id,
                user_content=message,
                assistant_content=full_content,
                model_used=served_model,
                is_new=is_new,
                assistant_tokens=usage_tokens,
            )
        except PersistenceError as e:
            status = "persistence_error"
            yield format_sse_event("error", {"message": e.message, "kind": "persistence"})
        else:
            if ok and not cache.hit:
                await run_in_threadpool(
                    store_answer,
                    redis_client,
                    owner_id,
                    message,
                    ok=True,
                    output=full_content,
                    model=served_model,
                    session_id=session.id,
                    ttl_seconds=cache_ttl_s,
                )
            await run_in_threadpool(
                invalidate_session_views, redis_client, owner_id, reason="append"
            )

        yield SSE_DONE

    except (asyncio.CancelledError, GeneratorExit):
        status = "disconnected"
        logger.info("stream_client_disconnect", chars_delivered=len(full_content))
        raise
    except ApiError as e:
        status = "error"
        yield format_sse_event("error", {"message": e.message, "code": e.code.value})
        yield SSE_DONE
    except Exception as e:
        status = "error"
        logger.exception("stream_unexpected_error", error_type=type(e).__name__)
        yield format_sse_event(
            "error",
            {"message": user_message_for(LLMErrorClass.UNKNOWN), "kind": "unknown"},
        )
        yield SSE_DONE
    finally:
        db.close()
        logger.info(
            "stream_end",
            status=status,
            chars_generated=len(full_content),
            total_ms=int((time.monotonic() - start_time) * 1000),
        )
