from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from labsync.services.audio_capture import list_input_devices


router = APIRouter(prefix="/devices", tags=["devices"])


class Device(BaseModel):
    id: str
    name: str
    is_default: bool = False


@router.get("")
def list_devices() -> dict[str, list[Device]]:
    try:
        inputs = [Device(**d) for d in list_input_devices()]
    except Exception:
        # Fail softly; PortAudio may be missing on servers
        inputs = []
    return {"inputs": inputs}
