"""Remembered playback device."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..utils.secure_store import SecureBlobStore
from .errors import StorageCorruption

logger = logging.getLogger("spotiswitch.devices")


@dataclass(frozen=True)
class DeviceRef:
    id: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}


class DeviceStore:
    """The ``device`` record: the last device playback was transferred to."""

    def __init__(self, blob_store: SecureBlobStore):
        self._blob_store = blob_store

    def load(self) -> Optional[DeviceRef]:
        try:
            data = self._blob_store.read_json()
            if data is None:
                return None
            return DeviceRef(id=str(data["id"]), name=str(data.get("name") or data["id"]))
        except (StorageCorruption, KeyError, TypeError, AttributeError) as e:
            logger.warning("🗑️ Device record unusable, deleting: %s", e)
            self._blob_store.delete()
            return None

    def save(self, device: DeviceRef) -> None:
        self._blob_store.write_json(device.to_dict())
        logger.info("💾 Default device saved", extra={"device": device.name})

    def delete(self) -> None:
        self._blob_store.delete()
