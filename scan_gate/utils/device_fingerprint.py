"""Client-side device fingerprint generation.

Python clients (CLIs, kiosks, test harnesses) use this helper to send a stable
``X-Device-Fingerprint`` header. The identifier is derived from quasi-stable
device attributes plus a random seed persisted next to it, and is generated
once: later calls reuse the stored value.

Generating a fingerprint never raises. If attribute collection fails the
client gets a random ``fallback_<time>_<random>`` identifier instead, and if
the identifier cannot be persisted it is still returned.
"""

from __future__ import annotations

import hashlib
import json
import logging
import platform
import secrets
import string
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def to_base36(value: int) -> str:
    """
    >>> to_base36(0)
    '0'
    >>> to_base36(35)
    'z'
    >>> to_base36(36)
    '10'
    """
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


@dataclass(frozen=True)
class DeviceAttributes:
    platform: str
    model: str | None = None
    brand: str | None = None
    manufacturer: str | None = None
    os_version: str | None = None
    vendor_id: str | None = None
    app_id: str | None = None

    def components(self) -> list[str]:
        values = [
            self.platform,
            self.model,
            self.brand,
            self.manufacturer,
            self.os_version,
            self.vendor_id,
            self.app_id,
        ]
        return [v for v in values if v]


def collect_host_attributes(app_id: str | None = None) -> DeviceAttributes:
    """Attributes of the machine this process runs on."""
    uname = platform.uname()
    return DeviceAttributes(
        platform=uname.system.lower() or "unknown",
        model=uname.machine or None,
        manufacturer=uname.node or None,
        os_version=uname.release or None,
        vendor_id=f"{uuid.getnode():012x}",
        app_id=app_id,
    )


class FileIdentifierStore:
    """Persist ``{"seed": ..., "device_id": ...}`` in a small JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, str]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("device_fingerprint.store_unreadable", extra={"path": str(self.path)})
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class DeviceFingerprintGenerator:
    def __init__(
        self,
        store: FileIdentifierStore,
        collect: Callable[[], DeviceAttributes] = collect_host_attributes,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._collect = collect
        self._clock = clock

    def fallback_id(self) -> str:
        timestamp = to_base36(int(self._clock() * 1000))
        random_part = "".join(secrets.choice(_BASE36) for _ in range(13))
        return f"fallback_{timestamp}_{random_part}"

    def _derive(self, seed: str) -> str:
        attributes = self._collect()
        material = "|".join([*attributes.components(), seed])
        digest = hashlib.sha256(material.encode("utf-8")).hexdigest()[:32]
        return f"device_{digest}"

    def get_fingerprint(self) -> str:
        """Return the stored identifier, generating and persisting one if needed."""
        data = self._store.load()
        stored = data.get("device_id")
        if stored:
            return stored

        seed = data.get("seed") or secrets.token_hex(16)
        try:
            device_id = self._derive(seed)
        except Exception as exc:  # noqa: BLE001 - attribute collection must never block the client
            logger.warning(
                "device_fingerprint.collection_failed",
                extra={"error_type": type(exc).__name__},
            )
            device_id = self.fallback_id()

        try:
            self._store.save({"seed": seed, "device_id": device_id})
        except OSError:
            logger.warning("device_fingerprint.store_unwritable", extra={"path": str(self._store.path)})
        else:
            logger.info("device_fingerprint.generated")
        return device_id

    def reset(self) -> None:
        """Forget the stored identifier; the next call generates a new one."""
        self._store.clear()
