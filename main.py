import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from config.settings import METRICS_ENABLED
from core.console import Console
from core.errors import (
    ConfigurationError,
    InstanceExistsError,
    InventoryError,
    ProvisioningError,
)
from core.inventory import InventoryStore
from core.logger import log_event
from core.metrics import REQUEST_COUNT, REQUEST_LATENCY, record_inventory
from core.provisioner import Provisioner
from core.pve_cli import PveCli
from core.request_loader import load_request
from installers.registry import available_installers, get_installer
from schemas.provision_schema import InstanceKind, ReusePolicy


@asynccontextmanager
async def lifespan(app: FastAPI):
    if METRICS_ENABLED:
        try:
            snapshot = inventory.load()
            record_inventory(snapshot.summary.running, snapshot.summary.stopped)
        except InventoryError:
            pass
        log_event("[app] Metrics enabled")
    yield


app = FastAPI(
    title="PVE Provisioner API",
    description=(
        "Provision Proxmox VE LXC containers and VMs.\n\n"
        "Features:\n"
        "- One-shot create/start/readiness/install pipeline per request\n"
        "- Application installers (Metabase, Vault, Docker, Supabase)\n"
        "- LXC inventory snapshots (JSON/CSV)\n"
        "- Prometheus metrics"
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# Requests are served without a terminal, so any reuse prompt is declined.
console = Console(interactive=False)
pve = PveCli()
inventory = InventoryStore(pve, console)


class InstanceCreateSchema(BaseModel):
    kind: InstanceKind
    app: Optional[str] = Field(None, description="Installer to run after start")
    options: Dict[str, Any] = Field(
        default_factory=dict,
        description="ProvisioningRequest fields, e.g. instance_id, cores, memory_mb, ip, gateway",
    )


def _http_error(e: ProvisioningError) -> HTTPException:
    if isinstance(e, InstanceExistsError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ConfigurationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, InventoryError):
        return HTTPException(status_code=404, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    endpoint = request.url.path
    method = request.method

    if not METRICS_ENABLED or endpoint == "/metrics":
        return await call_next(request)

    start_time = time.time()
    try:
        response = await call_next(request)
        return response
    finally:
        duration = time.time() - start_time
        REQUEST_COUNT.labels(method=method, endpoint=endpoint).inc()
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(duration)


@app.get("/", tags=["System"])
def root():
    return {
        "message": "PVE Provisioner API is running",
        "version": app.version,
        "installers": available_installers(),
    }


@app.post("/instances", tags=["Instances"])
def create_instance(payload: InstanceCreateSchema):
    try:
        installer = get_installer(payload.app, console) if payload.app else None
        request = load_request(
            payload.kind,
            overrides=payload.options,
            environ={},
            app_defaults=installer.app_defaults(payload.kind) if installer else None,
            pve=pve,
        )
        if request.reuse_policy == ReusePolicy.PROMPT:
            request.reuse_policy = ReusePolicy.FAIL
        result = Provisioner(pve, console).provision(request, installer)
        return JSONResponse(status_code=201, content=result.model_dump(mode="json"))
    except ProvisioningError as e:
        raise _http_error(e)


@app.get("/instances/{kind}/{instance_id}/status", tags=["Instances"])
def instance_status(kind: InstanceKind, instance_id: int):
    try:
        if not pve.exists(kind, instance_id):
            raise HTTPException(status_code=404, detail=f"{kind.value.upper()} {instance_id} not found")
        return {"kind": kind.value, "instance_id": instance_id, "status": pve.status(kind, instance_id)}
    except ProvisioningError as e:
        raise _http_error(e)


@app.get("/inventory", tags=["Inventory"])
def get_inventory():
    try:
        return inventory.load().model_dump(mode="json")
    except ProvisioningError as e:
        raise _http_error(e)


@app.post("/inventory/scan", tags=["Inventory"])
def scan_inventory():
    try:
        return inventory.update().model_dump(mode="json")
    except InventoryError as e:
        # nothing to scan is not a missing resource
        raise HTTPException(status_code=400, detail=str(e))
    except ProvisioningError as e:
        raise _http_error(e)


@app.get("/inventory/find", tags=["Inventory"])
def find_in_inventory(term: str):
    try:
        matches = inventory.find(term)
    except ProvisioningError as e:
        raise _http_error(e)
    return {"term": term, "containers": [m.model_dump(mode="json") for m in matches]}


@app.get("/metrics", tags=["Monitoring"])
def metrics():
    if not METRICS_ENABLED:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
