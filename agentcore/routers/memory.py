"""
Agent memory and shared-context API.

GET/DELETE /agents/{agent_id}/memory
GET        /agents/{agent_id}/context
POST       /agents/{agent_id}/files          {"path": "..."}
DELETE     /agents/{agent_id}/files?path=...
POST       /agents/{agent_id}/snippets       {"content": "...", "file_name": "..."?}
DELETE     /agents/{agent_id}/snippets/{index}
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from agentcore.dependencies import AuthError, enforce_auth, get_service
from agentcore.engine import AgentService, build_error_envelope, new_request_id
from agentcore.errors import ReentrancyError

logger = logging.getLogger("agent-core")

router = APIRouter(prefix="/agents", tags=["memory"])


def _memory_error(status_code: int, code: str, message: str, agent_id: str, details: Any = None) -> JSONResponse:
    _, body = build_error_envelope(
        request_id=new_request_id(),
        agent_id=agent_id,
        status_code=status_code,
        code=code,
        message=message,
        details=details,
    )
    return JSONResponse(status_code=status_code, content=body)


def _auth_error(request: Request, agent_id: str) -> Optional[JSONResponse]:
    try:
        enforce_auth(request)
    except AuthError as exc:
        return _memory_error(401, "UNAUTHORIZED", str(exc), agent_id)
    return None


async def _json_object(request: Request) -> Optional[Dict[str, Any]]:
    try:
        payload = await request.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


@router.get("/{agent_id}/memory")
async def get_memory(agent_id: str, service: AgentService = Depends(get_service)) -> JSONResponse:
    memory = service.get_memory(agent_id)
    return JSONResponse(status_code=200, content=memory.model_dump(mode="json"))


@router.delete("/{agent_id}/memory")
async def delete_memory(agent_id: str, request: Request, service: AgentService = Depends(get_service)) -> JSONResponse:
    denied = _auth_error(request, agent_id)
    if denied is not None:
        return denied
    try:
        await service.clear_memory(agent_id)
    except ReentrancyError as exc:
        return _memory_error(409, "REENTRANT_REQUEST", str(exc), agent_id)
    return JSONResponse(status_code=200, content={"ok": True, "agent_id": agent_id})


@router.get("/{agent_id}/context")
async def get_context(agent_id: str, service: AgentService = Depends(get_service)) -> JSONResponse:
    return JSONResponse(status_code=200, content=service.get_shared_context(agent_id))


@router.post("/{agent_id}/files")
async def add_file(agent_id: str, request: Request, service: AgentService = Depends(get_service)) -> JSONResponse:
    denied = _auth_error(request, agent_id)
    if denied is not None:
        return denied
    payload = await _json_object(request)
    path = payload.get("path") if payload else None
    if not isinstance(path, str) or not path.strip():
        return _memory_error(400, "MALFORMED_REQUEST", "Request body must have a non-empty 'path' string", agent_id)

    added = service.add_shared_file(agent_id, path.strip())
    return JSONResponse(status_code=200, content={"ok": True, "added": added, **service.get_shared_context(agent_id)})


@router.delete("/{agent_id}/files")
async def remove_file(
    agent_id: str, request: Request, path: str = "", service: AgentService = Depends(get_service)
) -> JSONResponse:
    denied = _auth_error(request, agent_id)
    if denied is not None:
        return denied
    if not path.strip():
        return _memory_error(400, "MALFORMED_REQUEST", "Query parameter 'path' is required", agent_id)
    if not service.remove_shared_file(agent_id, path.strip()):
        return _memory_error(404, "NOT_FOUND", f"File is not shared: {path}", agent_id)
    return JSONResponse(status_code=200, content={"ok": True, **service.get_shared_context(agent_id)})


@router.post("/{agent_id}/snippets")
async def add_snippet(agent_id: str, request: Request, service: AgentService = Depends(get_service)) -> JSONResponse:
    denied = _auth_error(request, agent_id)
    if denied is not None:
        return denied
    payload = await _json_object(request)
    content = payload.get("content") if payload else None
    file_name = payload.get("file_name") if payload else None
    if not isinstance(content, str) or not content:
        return _memory_error(400, "MALFORMED_REQUEST", "Request body must have a non-empty 'content' string", agent_id)
    if file_name is not None and not isinstance(file_name, str):
        return _memory_error(400, "MALFORMED_REQUEST", "'file_name' must be a string", agent_id)

    index = service.add_text_snippet(agent_id, content, file_name)
    return JSONResponse(status_code=200, content={"ok": True, "index": index, **service.get_shared_context(agent_id)})


@router.delete("/{agent_id}/snippets/{index}")
async def remove_snippet(
    agent_id: str, index: int, request: Request, service: AgentService = Depends(get_service)
) -> JSONResponse:
    denied = _auth_error(request, agent_id)
    if denied is not None:
        return denied
    try:
        service.remove_text_snippet(agent_id, index)
    except IndexError as exc:
        return _memory_error(404, "NOT_FOUND", str(exc), agent_id)
    return JSONResponse(status_code=200, content={"ok": True, **service.get_shared_context(agent_id)})
