"""
Device roster: the logical endpoints signed in under one identity.

The current device is the local capture/playback endpoint; its mute flag
gates both recording and playback of incoming messages.
"""

import logging
import threading
from typing import Optional

from .activity import ActivityLog
from .models import Device, DeviceKind, DeviceStatus

logger = logging.getLogger(__name__)


class DeviceRoster:
    """Mute/online state of the user's devices."""

    def __init__(self, devices: list[Device], activity: Optional[ActivityLog] = None):
        """
        Args:
            devices: Roster contents; exactly one must have ``is_current``
            activity: Log receiving mute/disconnect entries (optional)

        Raises:
            ValueError: On duplicate ids or a current-device count other than one
        """
        ids = [d.id for d in devices]
        if len(set(ids)) != len(ids):
            raise ValueError("Device ids must be unique")
        current = [d for d in devices if d.is_current]
        if len(current) != 1:
            raise ValueError(f"Exactly one current device required, got {len(current)}")

        self._devices: dict[str, Device] = {d.id: d for d in devices}
        self._lock = threading.Lock()
        self.activity = activity

    def _log(self, message: str):
        logger.info(message)
        if self.activity is not None:
            self.activity.system(message)

    def devices(self) -> list[Device]:
        with self._lock:
            return list(self._devices.values())

    def get(self, device_id: str) -> Device:
        with self._lock:
            return self._devices[device_id]

    def toggle_mute(self, device_id: str) -> Device:
        """
        Flip the mute flag of one device.

        Raises:
            KeyError: Unknown device id
        """
        with self._lock:
            device = self._devices[device_id]
            device = device.model_copy(update={"is_muted": not device.is_muted})
            self._devices[device_id] = device

        self._log(f"Device {device.name} {'muted' if device.is_muted else 'unmuted'}")
        return device

    def mark_offline(self, device_id: str) -> Device:
        """
        Mark a device offline. There is no way back online.

        Raises:
            KeyError: Unknown device id
        """
        with self._lock:
            device = self._devices[device_id]
            if device.status == DeviceStatus.OFFLINE:
                return device
            device = device.model_copy(update={"status": DeviceStatus.OFFLINE})
            self._devices[device_id] = device

        self._log(f"Device {device.name} disconnected remotely")
        return device

    def current_device(self) -> Device:
        with self._lock:
            current = [d for d in self._devices.values() if d.is_current]
        if len(current) != 1:
            raise RuntimeError(f"Roster invariant violated: {len(current)} current devices")
        return current[0]

    def capture_allowed(self) -> bool:
        return not self.current_device().is_muted

    def playback_allowed(self) -> bool:
        return not self.current_device().is_muted


def default_roster(activity: Optional[ActivityLog] = None) -> DeviceRoster:
    """Roster used by the CLI client: this machine plus two linked devices."""
    return DeviceRoster(
        [
            Device(id="dev-1", name="Desktop Client (this machine)", kind=DeviceKind.DESKTOP, is_current=True),
            Device(id="dev-2", name="Mobile App (iPhone 13)", kind=DeviceKind.MOBILE),
            Device(
                id="dev-3",
                name="Web Client (Chrome)",
                kind=DeviceKind.WEB,
                is_muted=True,
                status=DeviceStatus.OFFLINE,
            ),
        ],
        activity=activity,
    )
