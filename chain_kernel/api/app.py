"""
Chain Kernel API: FastAPI endpoints.

Thin handler layer over the core services:
- Chain generation from anchors (plus optional daily context)
- Chain inspection and live step updates
- Degradation and status evaluation
- Exit gate checklists
- Monitor control

Every time-dependent endpoint accepts an optional `now`; the server clock is
used only when the caller leaves it out.
"""

from datetime import date as date_type, datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from chain_kernel.context.integration import build_generation_context, exit_gate_tags
from chain_kernel.degradation.service import DegradationService
from chain_kernel.gate.service import ExitGateService, UnknownConditionError
from chain_kernel.generator.chain_generator import AnchorValidationError, ChainGenerator
from chain_kernel.models.chain import ExecutionChain
from chain_kernel.models.context import DailyContext, GenerationContext
from chain_kernel.models.policy import MonitorConfig
from chain_kernel.monitor.loop import ChainMonitor
from chain_kernel.status.service import ChainStatusService, UnknownStepError
from chain_kernel.store.chains import ChainNotFoundError, ChainStore, StaleChainError


# --- Request/Response Models ---

class GenerateRequest(BaseModel):
    anchors: List[Dict[str, Any]]
    daily_context: Optional[DailyContext] = None
    current_location: Optional[str] = None
    energy_level: Optional[int] = Field(default=None, ge=1, le=5)
    surface_anchor: bool = False
    surface_recovery: bool = False
    include_exit_gate_marker: bool = False


class ClockRequest(BaseModel):
    now: Optional[datetime] = None


class StepActionRequest(BaseModel):
    now: Optional[datetime] = None
    expected_version: Optional[int] = None     # Defaults to the version just read


class GateCreateRequest(BaseModel):
    tags: Optional[List[str]] = None            # None = default checklist


class ConditionToggleRequest(BaseModel):
    satisfied: bool


def _resolve_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _base_version(req: StepActionRequest, read_version: int) -> int:
    if req.expected_version is not None:
        return req.expected_version
    return read_version


def _gate_payload(gate_id: str, service: ExitGateService) -> dict:
    return {
        "gate_id": gate_id,
        "gate": service.gate.model_dump(mode="json"),
        "evaluation": service.evaluate_gate().model_dump(mode="json"),
    }


# --- Application Factory ---

def create_app(
    store: Optional[ChainStore] = None,
    generator: Optional[ChainGenerator] = None,
    monitor_config: Optional[MonitorConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Chain Kernel API",
        description="Anchor-driven execution chains",
        version="0.1.0",
    )

    cs = store or ChainStore()
    gen = generator or ChainGenerator()
    degradation = DegradationService(gen.policy)
    status_service = ChainStatusService()
    monitor = ChainMonitor(
        cs,
        config=monitor_config,
        degradation=degradation,
        status=status_service,
    )
    gates: Dict[str, ExitGateService] = {}

    app.state.chain_store = cs
    app.state.generator = gen
    app.state.monitor = monitor
    app.state.gates = gates

    def _load(chain_id: str):
        found = cs.get_with_version(chain_id)
        if not found:
            raise HTTPException(404, "Chain not found")
        return found

    def _save(chain: ExecutionChain, version: int) -> int:
        try:
            return cs.replace(chain, version)
        except StaleChainError as e:
            raise HTTPException(409, str(e))
        except ChainNotFoundError:
            raise HTTPException(404, "Chain not found")

    def _gate(gate_id: str) -> ExitGateService:
        if gate_id not in gates:
            raise HTTPException(404, "Gate not found")
        return gates[gate_id]

    # === CHAINS ===

    @app.post("/chains/generate")
    def generate_chains(req: GenerateRequest):
        """Generate and store one chain per anchor."""
        if req.daily_context is not None:
            context = build_generation_context(
                req.daily_context,
                current_location=req.current_location,
                energy_level=req.energy_level,
                policy=gen.policy,
                include_exit_gate_marker=req.include_exit_gate_marker,
            )
        else:
            context = GenerationContext(
                current_location=req.current_location,
                energy_level=req.energy_level,
                include_exit_gate_marker=req.include_exit_gate_marker,
            )
        context = context.model_copy(update={
            "surface_anchor": req.surface_anchor,
            "surface_recovery": req.surface_recovery,
        })

        try:
            chains = gen.generate_chains_for_date(req.anchors, context)
        except AnchorValidationError as e:
            raise HTTPException(422, str(e))

        for chain in chains:
            cs.add(chain)
        return {
            "chains": [c.model_dump(mode="json") for c in chains],
            "gate_tags": exit_gate_tags(req.daily_context),
        }

    @app.get("/chains")
    def list_chains(date: Optional[date_type] = None):
        """Chains for one anchor date, or every stored chain."""
        if date is not None:
            return [c.model_dump(mode="json") for c in cs.list_for_date(date)]
        return [c.model_dump(mode="json") for c, _ in cs.list_all()]

    @app.get("/chains/{chain_id}")
    def get_chain(chain_id: str):
        chain, version = _load(chain_id)
        return {"chain": chain.model_dump(mode="json"), "version": version}

    @app.post("/chains/{chain_id}/steps/{step_id}/start")
    def start_step(chain_id: str, step_id: str, req: Optional[StepActionRequest] = None):
        """Mark a step in progress."""
        req = req or StepActionRequest()
        chain, version = _load(chain_id)
        try:
            updated = status_service.mark_step_in_progress(
                chain, step_id, _resolve_now(req.now)
            )
        except UnknownStepError:
            raise HTTPException(404, "Step not found")
        new_version = _save(updated, _base_version(req, version))
        return {"chain": updated.model_dump(mode="json"), "version": new_version}

    @app.post("/chains/{chain_id}/steps/{step_id}/complete")
    def complete_step(chain_id: str, step_id: str, req: Optional[StepActionRequest] = None):
        """Mark a step completed."""
        req = req or StepActionRequest()
        chain, version = _load(chain_id)
        try:
            updated = status_service.mark_step_completed(
                chain, step_id, _resolve_now(req.now)
            )
        except UnknownStepError:
            raise HTTPException(404, "Step not found")
        new_version = _save(updated, _base_version(req, version))
        return {"chain": updated.model_dump(mode="json"), "version": new_version}

    @app.post("/chains/{chain_id}/degrade")
    def degrade_chain(chain_id: str, req: Optional[ClockRequest] = None):
        """Apply degradation if the chain is past its completion deadline."""
        req = req or ClockRequest()
        chain, version = _load(chain_id)
        degraded = degradation.degrade_if_late(chain, _resolve_now(req.now))
        dropped = degradation.get_dropped_steps(chain, degraded)
        if degraded != chain:
            version = _save(degraded, version)
        return {
            "chain": degraded.model_dump(mode="json"),
            "dropped_steps": dropped,
            "version": version,
        }

    @app.get("/chains/{chain_id}/status")
    def chain_status(chain_id: str, now: Optional[datetime] = None):
        """Evaluate status without storing anything."""
        chain, _ = _load(chain_id)
        result = status_service.evaluate_chain_status(chain, _resolve_now(now))
        return result.model_dump(mode="json")

    # === EXIT GATES ===

    @app.post("/gates")
    def create_gate(req: Optional[GateCreateRequest] = None):
        """Create an exit gate from tags, or the default checklist."""
        if req is None or req.tags is None:
            service = ExitGateService.create_default()
        else:
            service = ExitGateService.from_gate_tags(req.tags)
        gate_id = f"gate_{uuid4().hex[:12]}"
        gates[gate_id] = service
        return _gate_payload(gate_id, service)

    @app.get("/gates/{gate_id}")
    def get_gate(gate_id: str):
        return _gate_payload(gate_id, _gate(gate_id))

    @app.post("/gates/{gate_id}/conditions/{condition_id}")
    def toggle_condition(gate_id: str, condition_id: str, req: ConditionToggleRequest):
        service = _gate(gate_id)
        try:
            service.toggle_condition(condition_id, req.satisfied)
        except UnknownConditionError:
            raise HTTPException(404, "Condition not found")
        return _gate_payload(gate_id, service)

    @app.post("/gates/{gate_id}/satisfy-all")
    def satisfy_all(gate_id: str):
        service = _gate(gate_id)
        service.satisfy_all_conditions()
        return _gate_payload(gate_id, service)

    @app.post("/gates/{gate_id}/reset")
    def reset_gate(gate_id: str):
        service = _gate(gate_id)
        service.reset_all_conditions()
        return _gate_payload(gate_id, service)

    # === MONITOR ===

    @app.get("/monitor/status")
    def monitor_status():
        return {
            "status": monitor.status,
            "config": monitor.config.model_dump(),
            "cycles": monitor.cycles,
            "tracked_chains": cs.count(),
        }

    @app.post("/monitor/run")
    def run_monitor(req: Optional[ClockRequest] = None):
        """Force one monitor cycle."""
        req = req or ClockRequest()
        results = monitor.reconcile_once(_resolve_now(req.now))
        return {"results": results, "updated": len(results)}

    return app


# Default application instance
app = create_app()
