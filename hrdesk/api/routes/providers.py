"""LLM provider health – per-provider counters and an overall state."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from hrdesk.api.routes.deps import ContainerDep
from hrdesk.config.loader import convert_to_camel

router = APIRouter()


@router.get("/status")
async def llm_status(container: ContainerDep) -> dict[str, Any]:
    router_ = container.orchestrator.router
    return convert_to_camel({**router_.health_summary(), "providers": router_.status()})
