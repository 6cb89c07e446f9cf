"""
api/routes/status.py -- Maintenance and announcement banners.

Routes:
  GET    /maintenance           -- current maintenance status (public)
  POST   /maintenance/schedule  -- schedule maintenance after `delay` seconds (admin only)
  POST   /maintenance/stop      -- end maintenance (admin only)
  GET    /announcement          -- current announcement (public)
  POST   /announcement          -- publish an announcement (admin only)
  DELETE /announcement          -- clear the announcement (admin only)

The write block that applies while maintenance is active lives in
api/main.py (maintenance_gate).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import AnnouncementData, AnnouncementPublish, Envelope, MaintenanceData, MaintenanceSchedule
from auth.dependencies import require_admin
from auth.models import Identity
from core.status import AnnouncementBoard, MaintenanceState

logger = logging.getLogger("quotegate.api.status")

# Auth policy:
# - GET  /maintenance, GET /announcement: public (session gate read-only prefixes)
# - everything else:                      requires admin (require_admin)
router = APIRouter()


def _maintenance(request: Request) -> MaintenanceState:
    return request.app.state.maintenance


def _announcements(request: Request) -> AnnouncementBoard:
    return request.app.state.announcements


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


@router.get("/maintenance", response_model=Envelope[MaintenanceData])
async def get_maintenance(request: Request) -> Envelope[MaintenanceData]:
    snapshot = _maintenance(request).snapshot()
    return Envelope[MaintenanceData](data=MaintenanceData(**snapshot.to_dict()))


@router.post("/maintenance/schedule", response_model=Envelope[MaintenanceData])
async def schedule_maintenance(
    request: Request,
    body: MaintenanceSchedule,
    admin: Identity = Depends(require_admin),
) -> Envelope[MaintenanceData]:
    snapshot = _maintenance(request).schedule(body.delay, body.msg)
    logger.info("Maintenance scheduled by %s in %ds", admin.username, body.delay)
    return Envelope[MaintenanceData](data=MaintenanceData(**snapshot.to_dict()), message="Maintenance scheduled.")


@router.post("/maintenance/stop", response_model=Envelope[MaintenanceData])
async def stop_maintenance(request: Request, admin: Identity = Depends(require_admin)) -> Envelope[MaintenanceData]:
    snapshot = _maintenance(request).stop()
    logger.info("Maintenance stopped by %s", admin.username)
    return Envelope[MaintenanceData](data=MaintenanceData(**snapshot.to_dict()), message="Maintenance ended.")


# ---------------------------------------------------------------------------
# Announcement
# ---------------------------------------------------------------------------


@router.get("/announcement", response_model=Envelope[AnnouncementData])
async def get_announcement(request: Request) -> Envelope[AnnouncementData]:
    return Envelope[AnnouncementData](data=AnnouncementData(**_announcements(request).snapshot().to_dict()))


@router.post("/announcement", response_model=Envelope[AnnouncementData])
async def publish_announcement(
    request: Request,
    body: AnnouncementPublish,
    admin: Identity = Depends(require_admin),
) -> Envelope[AnnouncementData]:
    current = _announcements(request).publish(body.msg)
    logger.info("Announcement published by %s", admin.username)
    return Envelope[AnnouncementData](data=AnnouncementData(**current.to_dict()), message="Announcement published.")


@router.delete("/announcement", response_model=Envelope[AnnouncementData])
async def clear_announcement(request: Request, admin: Identity = Depends(require_admin)) -> Envelope[AnnouncementData]:
    current = _announcements(request).clear()
    logger.info("Announcement cleared by %s", admin.username)
    return Envelope[AnnouncementData](data=AnnouncementData(**current.to_dict()), message="Announcement cleared.")
