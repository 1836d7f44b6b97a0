from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import FastAPI

from .agent.orchestrator import SchedulingOrchestrator, build_default_orchestrator
from .config import ENABLE_GCAL, LLM_DEBUG
from .llm import llm_available
from .routes import router


def create_app(orchestrator: Optional[SchedulingOrchestrator] = None) -> FastAPI:
  app = FastAPI(title="calendar-copilot")
  app.state.orchestrator = (orchestrator if orchestrator is not None
                            else build_default_orchestrator())
  app.include_router(router)
  return app


if __name__ == "__main__":
  import uvicorn

  logging.basicConfig(level=logging.DEBUG if LLM_DEBUG else logging.INFO)
  logging.getLogger(__name__).info("llm=%s gcal=%s", llm_available(), ENABLE_GCAL)
  uvicorn.run(create_app(),
              host=os.getenv("HOST", "127.0.0.1"),
              port=int(os.getenv("PORT", "8000")))
