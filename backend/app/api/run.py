# backend/app/api/run.py
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from support_triage.app.run import run_once
from support_triage.errors import ConfigurationException
from backend.app.status import run_status_store

router = APIRouter()


class RunRequest(BaseModel):
    bootstrap_days: int = Field(default=7, ge=1, le=365)
    max_results: int = Field(default=100, ge=1, le=500)


def progress_cb(step: str, event: dict[str, Any]) -> None:
    status_update: dict[str, Any] = {
        "state": "running",
        "step": step,
        "detail": event.get("detail"),
    }
    if "metrics" in event:
        status_update["metrics"] = event.get("metrics") or {}
    run_status_store.update(**status_update)

    outcome = event.get("outcome")
    if outcome:
        run_status_store.push_outcome(outcome)


@router.post("/run")
async def run_endpoint(payload: RunRequest | None = None) -> dict:
    payload = payload or RunRequest()
    run_status_store.start()

    try:
        summary = await run_once(
            bootstrap_days=payload.bootstrap_days,
            max_results=payload.max_results,
            progress_cb=progress_cb,
        )
    except ConfigurationException as exc:
        run_status_store.update(state="error", step="error", detail=exc.message)
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except Exception as exc:
        run_status_store.update(state="error", step="error", detail=str(exc))
        raise

    run_status_store.update(
        state="done",
        step="done",
        detail="Run completed",
        summary=summary,
        metrics={
            "processed": summary.get("processed"),
            "support": summary.get("support"),
            "drafted": summary.get("drafted"),
            "failed": summary.get("failed"),
            "errors": summary.get("errors"),
            "skipped": summary.get("skipped"),
        },
    )
    return {"ok": True, "summary": summary}


@router.get("/run/status")
async def run_status() -> dict:
    return {"ok": True, "status": run_status_store.snapshot()}
