"""Health endpoint for Simple Redirect.

Implements:
  GET /health — 503 before ready, 200 with rule-table status after

The ``app.state.ready`` gate is set by the lifespan only after the install or
startup signal has hydrated the cache and run the first rule sync, so a 200
here means both enforcement paths are live.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from redirector.config import Config
from redirector.lifecycle import RedirectCoordinator

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check endpoint.

    Response body (200):
        {
          "status": "ok",
          "global_enabled": true,
          "installed_rules": 3,
          "rule_syncs": 1,
          "pending_syncs": 0,
          "storage_backend": "sqlite" | "memory"
        }

    Response body (503):
        {"status": "starting", "message": "Simple Redirect is starting up..."}
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "message": "Simple Redirect is starting up...",
            },
        )

    config: Config = request.app.state.config
    coordinator: RedirectCoordinator = request.app.state.coordinator
    installed = await coordinator.engine.get_current_rules()

    return {
        "status": "ok",
        "global_enabled": coordinator.cache.read().global_enabled,
        "installed_rules": len(installed),
        "rule_syncs": coordinator.sync_queue.replacements,
        "pending_syncs": coordinator.sync_queue.pending,
        "storage_backend": config.storage.backend,
    }
