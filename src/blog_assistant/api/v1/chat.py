"""Chat endpoint.

POST /api/v1/chat streams the assistant's answer while it is generated.
Body: {"messages": [{"role": "user" | "assistant" | "system", "content": "..."}]}

Responses:
- 200: streamed answer, plain text by default or Server-Sent Events
  when CHAT_STREAM_FORMAT=sse
- 400: {"error": "Messages are required"}
- 500: {"error": "Failed to process chat request", "details": "..."}
"""

import json
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from blog_assistant.config import StreamFormat
from blog_assistant.models.chat import ChatRequest
from blog_assistant.services.chat_service import ChatService, ChatStream, get_chat_service
from blog_assistant.utils.errors import ValidationError
from blog_assistant.utils.logging import get_logger, log_error

logger = get_logger("chat_api")

router = APIRouter(tags=["chat"])

CHAT_FAILED = "Failed to process chat request"

_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def format_sse(data: str, event: Optional[str] = None) -> str:
    """Frame one Server-Sent Event, splitting multi-line data."""
    lines = [f"event: {event}"] if event else []
    lines.extend(f"data: {line}" for line in data.split("\n"))
    return "\n".join(lines) + "\n\n"


async def _text_stream(stream: ChatStream) -> AsyncIterator[str]:
    try:
        async for text in stream:
            yield text
    except Exception as e:
        # Headers are already sent; aborting the body is the only error signal left
        log_error(e, context={"endpoint": "chat", "phase": "streaming"})
        raise
    finally:
        await stream.aclose()


async def _sse_stream(stream: ChatStream) -> AsyncIterator[str]:
    try:
        async for text in stream:
            yield format_sse(json.dumps({"text": text}))
        yield format_sse("[DONE]")
    except Exception as e:
        log_error(e, context={"endpoint": "chat", "phase": "streaming"})
        yield format_sse(json.dumps({"error": CHAT_FAILED, "details": str(e)}), event="error")
    finally:
        await stream.aclose()


@router.post("/chat", status_code=status.HTTP_200_OK)
async def chat(
    request: Optional[ChatRequest] = None,
    chat_service: ChatService = Depends(get_chat_service),
):
    """
    Answer the latest user message using blog content as context.

    Every step up to the first byte of the answer (embedding, retrieval,
    prompt assembly, opening the completion) runs before the response starts,
    so failures there produce a JSON error instead of a broken stream.
    """
    messages = request.messages if request else None

    try:
        stream = await chat_service.start_chat(messages)
    except ValidationError as e:
        logger.warning(f"Rejected chat request: {e.message}")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": e.message})
    except Exception as e:
        log_error(e, context={"endpoint": "chat", "messages": len(messages or [])})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": CHAT_FAILED, "details": str(e)},
        )

    # The body may never be iterated if the client goes away first
    close_upstream = BackgroundTask(stream.aclose)
    if chat_service.settings.chat.stream_format == StreamFormat.SSE:
        return StreamingResponse(
            _sse_stream(stream),
            media_type="text/event-stream",
            headers=_STREAM_HEADERS,
            background=close_upstream,
        )
    return StreamingResponse(
        _text_stream(stream),
        media_type="text/plain; charset=utf-8",
        headers=_STREAM_HEADERS,
        background=close_upstream,
    )
