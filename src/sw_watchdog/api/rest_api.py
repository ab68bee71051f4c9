"""
REST API for the watchdog lifecycle

Exposes the lifecycle transitions (the equivalent of a managed node's
change_state service) plus read-only views of the heartbeat history and a
dry-run diagnosis.
"""

from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from sw_watchdog.cluster.diagnosis import NoEvidenceError
from sw_watchdog.cluster.lifecycle import ConfigurationError, StateTransitionError, WatchdogLifecycle
from sw_watchdog.utils.logging_config import get_logger

logger = get_logger(__name__)


class StateResponse(BaseModel):
    """Current lifecycle state"""
    state: str = Field(..., description="unconfigured, inactive, active or finalized")
    lease_ms: int
    heartbeat_topic: str
    publish_failures: bool
    sink_active: bool

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "state": "active",
            "lease_ms": 500,
            "heartbeat_topic": "heartbeat",
            "publish_failures": True,
            "sink_active": True,
        }
    })


class HeartbeatResponse(BaseModel):
    entity_id: int
    timestamp: float


class FailureResponse(BaseModel):
    reported_at: float
    entity_id: int
    last_seen: Optional[float] = None


class DiagnosisResponse(BaseModel):
    entity_id: int
    last_seen: float
    overdue: float
    mean_interval: Optional[float] = None
    samples: int
    margin: Optional[float] = None
    score: float
    uncertain: bool


def _state_response(lifecycle: WatchdogLifecycle) -> StateResponse:
    info = lifecycle.get_state_info()
    return StateResponse(
        state=info["state"],
        lease_ms=info["lease_ms"],
        heartbeat_topic=info["heartbeat_topic"],
        publish_failures=info["publish_failures"],
        sink_active=info["sink_active"],
    )


def create_app(node) -> FastAPI:
    """Build the API around a node exposing ``lifecycle`` and ``transition(name)``."""
    app = FastAPI(
        title="Software Watchdog API",
        description="Lifecycle control and inspection of a liveliness-based watchdog",
        version="1.0.0",
    )

    @app.get("/", tags=["General"])
    async def root():
        """Root endpoint"""
        return {
            "message": "Software watchdog",
            "node": getattr(node, "node_id", None),
            "docs": "/docs",
        }

    @app.get("/health", tags=["General"])
    async def health():
        return {"status": "ok", "state": node.lifecycle.state.value}

    @app.get("/state", response_model=StateResponse, tags=["Lifecycle"])
    async def get_state():
        return _state_response(node.lifecycle)

    @app.post("/transitions/{name}", response_model=StateResponse, tags=["Lifecycle"])
    async def trigger_transition(name: str):
        """
        Trigger a lifecycle transition

        - **name**: configure, activate, deactivate, cleanup or shutdown
        """
        if name not in WatchdogLifecycle.TRANSITIONS:
            raise HTTPException(status_code=404, detail=f"Unknown transition: {name}")
        try:
            node.transition(name)
        except StateTransitionError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except ConfigurationError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except OSError as e:
            logger.error("transition_release_failed", transition=name, error=str(e))
            raise HTTPException(status_code=500, detail=f"Transition {name} failed: {e}")
        return _state_response(node.lifecycle)

    @app.get("/history", response_model=List[HeartbeatResponse], tags=["Inspection"])
    async def get_history():
        history = node.lifecycle.history
        if history is None:
            return []
        return [HeartbeatResponse(**r.to_dict()) for r in history.snapshot()]

    @app.get("/diagnosis", response_model=DiagnosisResponse, tags=["Inspection"])
    async def get_diagnosis():
        """Which checkpoint would be reported if liveliness were lost right now"""
        try:
            loss = node.lifecycle.diagnose_now()
        except NoEvidenceError as e:
            raise HTTPException(status_code=404, detail=f"No evidence: {e.reason}")
        return DiagnosisResponse(**loss.to_dict())

    @app.get("/failures", response_model=List[FailureResponse], tags=["Inspection"])
    async def get_failures():
        """Most recent failures reported by this watchdog, oldest first"""
        return [FailureResponse(**f) for f in node.lifecycle.get_state_info()["recent_failures"]]

    return app
