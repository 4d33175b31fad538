"""Endpoints de estado de dispositivos y reactivación manual."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from ..auth import Principal, require_principal
from ..devices.registry import DeviceRegistry, UnknownDevice
from ..schemas import DeviceStatusOut
from .deps import get_registry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["devices"])


@router.get("/devices", response_model=List[DeviceStatusOut])
def list_devices(
    registry: DeviceRegistry = Depends(get_registry),
    principal: Principal = Depends(require_principal),
):
    return [DeviceStatusOut.from_domain(s) for s in registry.snapshots()]


@router.get("/devices/{device_id}", response_model=DeviceStatusOut)
def get_device(
    device_id: str,
    registry: DeviceRegistry = Depends(get_registry),
    principal: Principal = Depends(require_principal),
):
    try:
        return DeviceStatusOut.from_domain(registry.get(device_id))
    except UnknownDevice:
        raise HTTPException(status_code=404, detail=f"Unknown device: {device_id}")


@router.post("/devices/{device_id}/reactivate", response_model=DeviceStatusOut)
def reactivate_device(
    device_id: str,
    registry: DeviceRegistry = Depends(get_registry),
    principal: Principal = Depends(require_principal),
):
    """Reactiva un dispositivo desactivado por fallos; se vuelve a sondear en el próximo tick."""
    try:
        snapshot = registry.reactivate(device_id)
    except UnknownDevice:
        raise HTTPException(status_code=404, detail=f"Unknown device: {device_id}")

    logger.info("[DEVICES] Reactivation requested device=%s by=%s", device_id, principal.subject)
    return DeviceStatusOut.from_domain(snapshot)
