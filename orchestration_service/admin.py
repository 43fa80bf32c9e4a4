from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException

from .catalog import describe_catalog
from .config import get_settings
from .orchestrator import Orchestrator

router = APIRouter()

# The orchestrator is created by the application at startup and bound here.
_bound_orchestrator: Optional[Orchestrator] = None


def bind_orchestrator(o: Optional[Orchestrator]):
    global _bound_orchestrator
    _bound_orchestrator = o


def _require_orchestrator() -> Orchestrator:
    if not _bound_orchestrator:
        raise HTTPException(status_code=500, detail="orchestrator not bound")
    return _bound_orchestrator


def _check_token(x_admin_token: Optional[str]) -> None:
    token = get_settings().ADMIN_TOKEN
    if token and x_admin_token != token:
        raise HTTPException(status_code=401, detail="unauthorized")


@router.get("/health")
async def health() -> Dict[str, Any]:
    return {"ok": True, "bound": _bound_orchestrator is not None}


@router.get("/operations")
async def list_operations() -> Dict[str, Any]:
    orch = _require_orchestrator()
    if orch.registry is None:
        return {"count": 0, "operations": [], "catalog": ""}
    definitions = orch.registry.definitions()
    ops = [d.as_dict() for d in definitions]
    # planner-readable listing, grouped by family
    return {"count": len(ops), "operations": ops, "catalog": describe_catalog(definitions)}


@router.post("/cache/invalidate/{family}")
async def invalidate_family(family: str, x_admin_token: str = Header(None, alias="X-Admin-Token")):
    _check_token(x_admin_token)
    orch = _require_orchestrator()
    if orch.cache is None:
        return {"family": family, "removed": 0, "cache": "disabled"}
    removed = await orch.cache.invalidate_family(family)
    return {"family": family, "removed": removed}
