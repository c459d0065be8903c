"""Rule management API — the options page and toolbar action over HTTP.

Routes:
    GET    /config               — persisted Configuration
    POST   /rules                — add a redirect {source, target}
    POST   /rules/{index}/toggle — enable/pause one redirect
    DELETE /rules/{index}        — remove one redirect
    POST   /allowlist            — add an allowlist pattern
    DELETE /allowlist            — remove an allowlist pattern
    PUT    /global               — set the global switch
    POST   /toggle               — flip the global switch (toolbar action)
    GET    /installed            — rules currently installed in the engine
    POST   /navigation           — report a tab URL change (fallback matcher)

Edits go through ConfigEditor and only write the store; the coordinator picks
them up from the change notification. RuleValidationError → HTTP 400.

Every route depends on require_ready: nothing is accepted before the first
sync has completed.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from redirector.editor import ConfigEditor
from redirector.errors import RuleValidationError
from redirector.lifecycle import RedirectCoordinator
from redirector.models import Configuration
from redirector.utils.logger import get_logger

logger = get_logger(__name__)


# ─── Dependencies ─────────────────────────────────────────────────────────────


async def require_ready(request: Request) -> None:
    """FastAPI dependency: raises HTTP 503 if app.state.ready is not True."""
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "message": "Simple Redirect is starting up...",
            },
        )


def get_editor(request: Request) -> ConfigEditor:
    return request.app.state.editor


def get_coordinator(request: Request) -> RedirectCoordinator:
    return request.app.state.coordinator


router = APIRouter(tags=["rules"], dependencies=[Depends(require_ready)])


# ─── Request Models ───────────────────────────────────────────────────────────


class AddRuleRequest(BaseModel):
    """Request body for POST /rules."""

    source: str
    target: str


class AllowlistRequest(BaseModel):
    """Request body for POST /allowlist and DELETE /allowlist."""

    pattern: str


class GlobalSwitchRequest(BaseModel):
    enabled: bool


class NavigationRequest(BaseModel):
    """Request body for POST /navigation — one tab URL change."""

    tab_id: int
    url: Optional[str] = None


# ─── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/config")
async def get_config(editor: ConfigEditor = Depends(get_editor)) -> dict[str, Any]:
    return _render(await editor.read())


@router.post("/rules", status_code=201)
async def add_rule(
    body: AddRuleRequest,
    editor: ConfigEditor = Depends(get_editor),
) -> dict[str, Any]:
    try:
        rule = await editor.add_rule(body.source, body.target)
    except RuleValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"rule": rule.to_dict()}


@router.post("/rules/{index}/toggle")
async def toggle_rule(index: int, editor: ConfigEditor = Depends(get_editor)) -> dict[str, Any]:
    try:
        rule = await editor.toggle_rule(index)
    except RuleValidationError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"rule": rule.to_dict()}


@router.delete("/rules/{index}")
async def delete_rule(index: int, editor: ConfigEditor = Depends(get_editor)) -> dict[str, Any]:
    try:
        rule = await editor.delete_rule(index)
    except RuleValidationError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"removed": rule.to_dict()}


@router.post("/allowlist", status_code=201)
async def add_allowlist_entry(
    body: AllowlistRequest,
    editor: ConfigEditor = Depends(get_editor),
) -> dict[str, Any]:
    try:
        pattern = await editor.add_allowlist_entry(body.pattern)
    except RuleValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"pattern": pattern}


@router.delete("/allowlist")
async def remove_allowlist_entry(
    body: AllowlistRequest,
    editor: ConfigEditor = Depends(get_editor),
) -> dict[str, Any]:
    try:
        pattern = await editor.remove_allowlist_entry(body.pattern)
    except RuleValidationError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"removed": pattern}


@router.put("/global")
async def set_global(
    body: GlobalSwitchRequest,
    editor: ConfigEditor = Depends(get_editor),
) -> dict[str, bool]:
    return {"global_enabled": await editor.set_global_enabled(body.enabled)}


@router.post("/toggle")
async def toggle(coordinator: RedirectCoordinator = Depends(get_coordinator)) -> dict[str, bool]:
    """Toolbar action: flip the global switch and wait for the rule sync."""
    return {"global_enabled": await coordinator.on_toggle()}


@router.get("/installed")
async def installed_rules(
    coordinator: RedirectCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    rules = await coordinator.engine.get_current_rules()
    return {"rules": [rule.to_dict() for rule in rules]}


@router.post("/navigation")
async def navigation(
    body: NavigationRequest,
    coordinator: RedirectCoordinator = Depends(get_coordinator),
) -> dict[str, Optional[str]]:
    target = await coordinator.on_navigation(body.tab_id, body.url)
    return {"redirected_to": target}


def _render(config: Configuration) -> dict[str, Any]:
    return {
        "rules": [rule.to_dict() for rule in config.rules],
        "allowlist": list(config.allowlist),
        "global_enabled": config.global_enabled,
    }
