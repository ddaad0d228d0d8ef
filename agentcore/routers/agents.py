"""
Agent messaging API.

POST /agents/{agent_id}/messages   -> full response, completion mode and task report
POST /agents/{agent_id}/stream     -> server-sent events (chunk ... done)
POST /agents/{agent_id}/cancel     -> cancel the in-flight response
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from agentcore.dependencies import AuthError, enforce_auth, get_service
from agentcore.engine import AgentService, ErrorEnvelope, build_error_envelope, new_request_id
from agentcore.errors import ReentrancyError
from agentcore.models import AgentConfig, IntentHint
from agentcore.profile_loader import ProfileLoadError, parse_agent_config

logger = logging.getLogger("agent-core")

router = APIRouter(prefix="/agents", tags=["agents"])


def _agents_error(
    status_code: int, code: str, message: str, details: Any = None, *, agent_id: Optional[str] = None
) -> JSONResponse:
    _, body = build_error_envelope(
        request_id=new_request_id(),
        agent_id=agent_id,
        status_code=status_code,
        code=code,
        message=message,
        details=details,
    )
    return JSONResponse(status_code=status_code, content=body)


async def _parse_message_request(
    request: Request, agent_id: str
) -> Tuple[AgentConfig, str, Optional[IntentHint]]:
    try:
        enforce_auth(request)
    except AuthError as exc:
        raise ErrorEnvelope(401, "UNAUTHORIZED", str(exc)) from exc

    try:
        payload = json.loads(await request.body() or b"null")
    except json.JSONDecodeError as exc:
        raise ErrorEnvelope(400, "MALFORMED_REQUEST", "Request body must be valid JSON", {"message": str(exc)}) from exc

    if not isinstance(payload, dict):
        raise ErrorEnvelope(400, "MALFORMED_REQUEST", "Request body must be a JSON object")
    message = payload.get("message")
    if not isinstance(message, str) or not message.strip():
        raise ErrorEnvelope(
            400,
            "MALFORMED_REQUEST",
            "Request body must have a non-empty 'message' string",
            [{"path": ["message"], "message": "Missing 'message' field"}],
        )

    try:
        agent = parse_agent_config(payload.get("agent"), expected_id=agent_id)
    except ProfileLoadError as exc:
        raise ErrorEnvelope(422, "AGENT_CONFIG_INVALID", str(exc), exc.details) from exc

    intent: Optional[IntentHint] = None
    raw_intent = payload.get("intent")
    if raw_intent is not None:
        try:
            intent = IntentHint.model_validate(raw_intent)
        except ValidationError as exc:
            raise ErrorEnvelope(400, "MALFORMED_REQUEST", "Invalid 'intent' object", {"message": str(exc)}) from exc

    return agent, message, intent


@router.post("/{agent_id}/messages")
async def post_message(agent_id: str, request: Request, service: AgentService = Depends(get_service)) -> JSONResponse:
    """
    Process one message: stream through the safety monitor, then execute
    the commands in the response. Returns the full response and task report.
    """
    request_id = new_request_id()
    try:
        agent, message, intent = await _parse_message_request(request, agent_id)
        try:
            outcome = await service.process_message(agent, message, intent=intent)
        except ReentrancyError as exc:
            raise ErrorEnvelope(409, "REENTRANT_REQUEST", str(exc)) from exc
    except ErrorEnvelope as exc:
        return _agents_error(exc.status_code, exc.code, exc.message, exc.details, agent_id=agent_id)

    body: Dict[str, Any] = outcome.to_dict()
    body["meta"] = {"request_id": request_id, "agent": agent_id}
    return JSONResponse(status_code=200, content=body)


@router.post("/{agent_id}/stream")
async def stream_message(agent_id: str, request: Request, service: AgentService = Depends(get_service)):
    """
    Server-sent events: `chunk` per streamed increment, then `done` with the
    completion mode and task report (or `error`).
    """
    try:
        agent, message, intent = await _parse_message_request(request, agent_id)
    except ErrorEnvelope as exc:
        return _agents_error(exc.status_code, exc.code, exc.message, exc.details, agent_id=agent_id)

    if service.registry.is_streaming(agent_id):
        return _agents_error(409, "REENTRANT_REQUEST", str(ReentrancyError(agent_id)), agent_id=agent_id)

    queue: "asyncio.Queue[Optional[Tuple[str, Dict[str, Any]]]]" = asyncio.Queue()

    async def on_response(text: str, done: bool) -> None:
        if not done:
            await queue.put(("chunk", {"content": text}))

    async def run() -> None:
        try:
            outcome = await service.process_message(agent, message, on_response, intent=intent)
            await queue.put(("done", outcome.to_dict()))
        except ReentrancyError as exc:
            await queue.put(("error", {"code": "REENTRANT_REQUEST", "message": str(exc)}))
        finally:
            await queue.put(None)

    async def event_stream():
        task = asyncio.create_task(run())
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                event, payload = item
                yield f"event: {event}\ndata: {json.dumps(payload)}\n\n"
        finally:
            if not task.done():
                service.cancel_stream(agent_id)
            await task

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@router.post("/{agent_id}/cancel")
async def cancel_message(agent_id: str, request: Request, service: AgentService = Depends(get_service)) -> JSONResponse:
    try:
        enforce_auth(request)
    except AuthError as exc:
        return _agents_error(401, "UNAUTHORIZED", str(exc), agent_id=agent_id)

    cancelled = service.cancel_stream(agent_id)
    return JSONResponse(status_code=200, content={"ok": True, "agent_id": agent_id, "cancelled": cancelled})
