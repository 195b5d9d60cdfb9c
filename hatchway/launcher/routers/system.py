"""Health and version probes."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from hatchway.launcher.deps import AppSettings

router = APIRouter(tags=["system"])

_INDEX = """Hatchway workspace launcher

POST /launch?id=<app id>
POST /terminate[?id=<workspace id>]
GET  /status
GET  /workspaces
GET  /options
GET  /paymodels
GET  /allpaymodels
POST /setpaymodel?id=<pay model id>
POST /resetpaymodels
"""


@router.get("/", response_class=PlainTextResponse)
async def index() -> str:
    return _INDEX


@router.get("/_status")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/_version")
async def version(settings: AppSettings) -> dict[str, str]:
    return {"version": settings.version}
