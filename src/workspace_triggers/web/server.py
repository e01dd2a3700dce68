"""Read-only FastAPI status server for configured triggers."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from ..config import TriggersConfig
from ..state import StateStore, StateStoreError

_LOG = logging.getLogger(__name__)


class ResourceStatus(BaseModel):
    """Persisted position of one polled resource."""
    resource_id: str
    cursor: Optional[str] = None
    seen_count: int = 0
    consecutive_failures: int = 0


class TriggerStatus(BaseModel):
    """Summary of a trigger's configuration and persisted state."""
    id: str
    provider: Optional[str] = None  # None when the state belongs to an unconfigured trigger
    configured: bool = True
    interval_seconds: Optional[float] = None
    resources: List[ResourceStatus] = []
    failures: Dict[str, int] = {}


def _trigger_status(store: StateStore, config: TriggersConfig, trigger_id: str) -> TriggerStatus:
    trigger = next((t for t in config.triggers if t.id == trigger_id), None)
    state = store.load(trigger_id)
    failures = store.load_failures(trigger_id)

    resource_ids = list(trigger.resources) if trigger else []
    resource_ids += [rid for rid in state.resources if rid not in resource_ids]
    resources = []
    for resource_id in resource_ids:
        resource_state = state.resource(resource_id)
        resources.append(
            ResourceStatus(
                resource_id=resource_id,
                cursor=resource_state.cursor,
                seen_count=len(resource_state.seen),
                consecutive_failures=failures.get(resource_id, 0),
            )
        )

    return TriggerStatus(
        id=trigger_id,
        provider=trigger.provider if trigger else None,
        configured=trigger is not None,
        interval_seconds=trigger.interval.total_seconds() if trigger else None,
        resources=resources,
        failures=failures,
    )


def create_app(store: StateStore, config: TriggersConfig) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Workspace Triggers",
        description="Inspect polling trigger cursors and failure counts",
        version="1.0.0",
    )

    app.state.store = store
    app.state.config = config

    @app.get("/health")
    async def health():
        """Liveness probe."""
        return {"status": "ok", "triggers": len(config.triggers)}

    @app.get("/api/triggers", response_model=List[TriggerStatus])
    async def api_triggers():
        """List configured triggers plus any trigger that only has persisted state."""
        trigger_ids = [trigger.id for trigger in config.triggers]
        trigger_ids += [tid for tid in store.list_triggers() if tid not in trigger_ids]
        try:
            return [_trigger_status(store, config, trigger_id) for trigger_id in trigger_ids]
        except StateStoreError as exc:
            _LOG.error("Failed to read trigger state: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.get("/api/triggers/{trigger_id}", response_model=TriggerStatus)
    async def api_trigger(trigger_id: str):
        """Get cursor and failure details of one trigger."""
        known = {trigger.id for trigger in config.triggers} | set(store.list_triggers())
        if trigger_id not in known:
            raise HTTPException(status_code=404, detail=f"Trigger not found: {trigger_id}")
        try:
            return _trigger_status(store, config, trigger_id)
        except StateStoreError as exc:
            _LOG.error("Failed to read state of %s: %s", trigger_id, exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    return app
