"""
Device identity, platform and application version used to enrich events.

Each value is resolved once and then read synchronously from a cache.
``preload`` does the resolving on worker threads; a getter called before
``preload`` resolves its value inline, which for the device id means reading
(or creating) the id file on the calling thread.
"""

from __future__ import annotations

import asyncio
import platform
import secrets
import string
import time
import uuid
from importlib import metadata
from pathlib import Path
from typing import Protocol, runtime_checkable

from .logging_config import get_logger

logger = get_logger()

DEVICE_ID_FILENAME = "device_id"
DEFAULT_STATE_DIR = Path.home() / ".eventbeacon"
UNKNOWN = "unknown"

_SYSTEMS = {"darwin": "darwin", "windows": "windows", "linux": "linux"}
_MACHINES = {
    "arm64": "aarch64",
    "aarch64": "aarch64",
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "x64": "x86_64",
}


@runtime_checkable
class IdentityProvider(Protocol):
    async def preload(self) -> None: ...

    def get_device_id(self) -> str: ...

    def get_platform(self) -> str: ...

    def get_app_version(self) -> str: ...


def detect_platform(system: str | None = None, machine: str | None = None) -> str:
    """Return a ``<os>-<arch>`` identifier such as ``darwin-aarch64``, or ``unknown``."""
    try:
        os_name = _SYSTEMS.get((system if system is not None else platform.system()).lower())
        arch = _MACHINES.get((machine if machine is not None else platform.machine()).lower())
    except Exception:
        return UNKNOWN
    if not os_name:
        return UNKNOWN
    return f"{os_name}-{arch or 'x86_64'}"


def _temporary_device_id() -> str:
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"temp-{int(time.time() * 1000)}-{suffix}"


class DefaultIdentityProvider:
    """
    Identity backed by a device id file in the user's home directory.

    Args:
        app_version: Explicit application version; wins over ``distribution``
        distribution: Installed distribution whose version is reported
        state_dir: Directory holding the ``device_id`` file
    """

    def __init__(
        self,
        *,
        app_version: str | None = None,
        distribution: str | None = None,
        state_dir: Path | str | None = None,
    ) -> None:
        self._explicit_version = app_version
        self._distribution = distribution
        self._state_dir = Path(state_dir) if state_dir is not None else DEFAULT_STATE_DIR
        self._device_id: str | None = None
        self._platform: str | None = None
        self._app_version: str | None = None

    @property
    def device_id_path(self) -> Path:
        return self._state_dir / DEVICE_ID_FILENAME

    async def preload(self) -> None:
        """Resolve device id, platform and version in parallel."""
        device_id, platform_name, version = await asyncio.gather(
            asyncio.to_thread(self._load_device_id),
            asyncio.to_thread(detect_platform),
            asyncio.to_thread(self._load_app_version),
        )
        if self._device_id is None:
            self._device_id = device_id
        if self._platform is None:
            self._platform = platform_name
        if self._app_version is None:
            self._app_version = version

    def _load_device_id(self) -> str:
        path = self.device_id_path
        try:
            if path.exists():
                stored = path.read_text(encoding="utf-8").strip()
                if stored:
                    return stored
            device_id = str(uuid.uuid4())
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(device_id, encoding="utf-8")
            return device_id
        except OSError as e:
            logger.warning(f"Failed to load device id from {path}, using a temporary one: {e}")
            return _temporary_device_id()

    def _load_app_version(self) -> str:
        if self._explicit_version:
            return self._explicit_version
        if self._distribution:
            try:
                return metadata.version(self._distribution)
            except metadata.PackageNotFoundError:
                logger.debug(f"Distribution {self._distribution!r} is not installed")
        return UNKNOWN

    def get_device_id(self) -> str:
        if self._device_id is None:
            self._device_id = self._load_device_id()
        return self._device_id

    def get_platform(self) -> str:
        if self._platform is None:
            self._platform = detect_platform()
        return self._platform

    def get_app_version(self) -> str:
        # the installed-version lookup only happens in preload()
        return self._app_version or self._explicit_version or UNKNOWN


class StaticIdentityProvider:
    """Identity with fixed values, for embedding and tests."""

    def __init__(self, device_id: str, platform: str = UNKNOWN, app_version: str = UNKNOWN) -> None:
        self._device_id = device_id
        self._platform = platform
        self._app_version = app_version

    async def preload(self) -> None:
        return None

    def get_device_id(self) -> str:
        return self._device_id

    def get_platform(self) -> str:
        return self._platform

    def get_app_version(self) -> str:
        return self._app_version
