from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, ConfigDict

from .agent.orchestrator import SchedulingOrchestrator
from .config import API_BASE

logger = logging.getLogger(__name__)

router = APIRouter(prefix=API_BASE)


class ResolveRequest(BaseModel):
  model_config = ConfigDict(extra="ignore")

  query: str
  conversation_id: Optional[str] = None
  dry_run: bool = False


def _orchestrator(request: Request) -> SchedulingOrchestrator:
  return request.app.state.orchestrator


@router.get("/health")
async def health() -> Dict[str, str]:
  return {"status": "ok"}


@router.post("/agent/resolve")
async def agent_resolve(body: ResolveRequest, request: Request) -> Dict[str, Any]:
  decision = await _orchestrator(request).resolve(body.query,
                                                  conversation_id=body.conversation_id,
                                                  commit=not body.dry_run)
  logger.info("resolve -> %s (conversation=%s)", decision.kind, decision.conversation_id)
  return decision.model_dump(mode="json")


@router.delete("/agent/conversations/{conversation_id}", status_code=204)
async def agent_forget(conversation_id: str, request: Request) -> Response:
  _orchestrator(request).store.delete(conversation_id)
  return Response(status_code=204)
