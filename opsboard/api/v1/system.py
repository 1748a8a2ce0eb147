"""System endpoints — health, cache inspection, manual resets and refreshes."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from opsboard.api.v1.dependencies import get_services, require_admin
from opsboard.container import Services
from opsboard.core.errors import OpsboardError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/system",
    tags=["system"],
    dependencies=[Depends(require_admin)],
)


class CacheClearRequest(BaseModel):
    """Empty body or ``namespace=None`` clears everything."""
    namespace: Optional[str] = None


def _record_count(value: Any) -> Optional[int]:
    if isinstance(value, dict) and "operators" in value:
        return len(value["operators"])
    if isinstance(value, (list, dict)):
        return len(value)
    return None


async def _probe(executor) -> Dict[str, Any]:
    try:
        await executor.fetch_scalar("SELECT 1")
        return {"ok": True}
    except OpsboardError as exc:
        return {"ok": False, "error": str(exc)}


@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Liveness + database probes + refresh state."""
    databases = {
        "local": await _probe(services.local_db),
        "cloud": await _probe(services.cloud_db),
    }
    return {
        "status": "ok" if all(db["ok"] for db in databases.values()) else "degraded",
        "uptime_seconds": round((datetime.now() - services.started_at).total_seconds(), 1),
        "databases": databases,
        "upstream": {
            "configured": services.argus.configured,
            "auth_failed": services.argus.auth_failed,
        },
        "cache": services.cache.get_cache_info()["metrics"],
        "jobs": [job.to_dict() for job in services.scheduler.jobs],
        "last_errors": services.last_errors(),
    }


@router.get("/cache")
async def cache_info(services: Services = Depends(get_services)):
    """Per-key freshness, age, record count and backoff state."""
    info = services.cache.get_cache_info()
    for entry in info["entries"]:
        cached = services.cache.peek(entry["key"])
        entry["records"] = _record_count(cached.value) if cached else None
        entry["fetching"] = entry["state"] == "fetching"
    info["backoff"] = {
        coordinator.namespace: coordinator.backoff_info()
        for coordinator in services.coordinators
    }
    info["photos"] = services.photos.get_cache_info()
    info["schema"] = services.resolver.cached_tables()
    return info


@router.post("/cache/clear")
async def cache_clear(
    body: Optional[CacheClearRequest] = None,
    services: Services = Depends(get_services),
):
    namespace = body.namespace if body else None
    if namespace == "photos":
        services.photos.clear()
        return {"status": "cleared", "namespace": "photos"}

    known = {c.namespace for c in services.coordinators}
    if namespace and namespace not in known:
        raise HTTPException(status_code=404, detail=f"Unknown cache namespace '{namespace}'")

    dropped = services.cache.clear(namespace)
    if namespace is None:
        services.photos.clear()
    return {"status": "cleared", "namespace": namespace or "*", "entries": dropped}


@router.post("/schema/clear")
async def schema_clear(services: Services = Depends(get_services)):
    return {"status": "cleared", "tables": services.resolver.clear()}


@router.post("/upstream/reset")
async def upstream_reset(services: Services = Depends(get_services)):
    """Clear the Argus 403 latch after the token was fixed."""
    services.argus.reset_auth()
    services.status.sync.reset_backoff()
    return {"status": "reset", "auth_failed": services.argus.auth_failed}


@router.post("/refresh/{job}")
async def refresh_job(job: str, services: Services = Depends(get_services)):
    """Run a scheduler job now, ignoring backoff, and report the outcome."""
    if services.scheduler.get(job) is None:
        raise HTTPException(status_code=404, detail=f"Unknown job '{job}'")
    result = await services.scheduler.run_now(job)
    return {
        "job": job,
        "ok": result.ok,
        "source": result.source,
        "error": result.error,
        "records": _record_count(result.value),
    }


@router.get("/photos")
async def photos_probe(
    ids: str = Query(..., description="Comma-separated seller ids"),
    services: Services = Depends(get_services),
):
    wanted = [i.strip() for i in ids.split(",") if i.strip()]
    return {
        "photos": await services.photos.get_photos(wanted),
        "metrics": services.photos.get_cache_info(),
    }


@router.get("/last-errors")
async def last_errors(services: Services = Depends(get_services)):
    return services.last_errors()
