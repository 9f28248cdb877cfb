"""Exclusive access to the shared microphone/speaker resource."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from voice_triage.errors import ResourceContention

logger = logging.getLogger(__name__)


class AudioSession(Protocol):
    async def set_active(self, active: bool) -> None: ...


class AudioGate:
    """
    Binary gate around an audio session.

    Only one holder (the listening or the speaking phase) owns the resource at
    a time; handing it from one holder to the next does not toggle the device.
    `acquire` and `release` are idempotent and serialized.
    """

    def __init__(self, session: AudioSession) -> None:
        self._session = session
        self._lock = asyncio.Lock()
        self._active = False
        self._holder: str | None = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def holder(self) -> str | None:
        """Name of the phase currently holding the resource, if any."""
        return self._holder

    async def acquire(self, holder: str) -> None:
        """
        Activate the audio resource for `holder`.

        Raises:
            ResourceContention: If the device could not be activated.
        """
        async with self._lock:
            if self._active:
                if self._holder != holder:
                    logger.debug(f"[VOICE][GATE] handoff {self._holder} -> {holder}")
                self._holder = holder
                return
            try:
                await self._session.set_active(True)
            except Exception as e:
                logger.warning(f"[VOICE][GATE] activation failed for {holder}: {e}")
                raise ResourceContention(f"Audio device unavailable: {e}") from e
            self._active = True
            self._holder = holder
            logger.debug(f"[VOICE][GATE] active holder={holder}")

    async def release(self) -> None:
        """Deactivate the audio resource. Failures are logged, never raised."""
        async with self._lock:
            if not self._active:
                return
            holder = self._holder
            self._active = False
            self._holder = None
            try:
                await self._session.set_active(False)
            except Exception as e:
                logger.warning(f"[VOICE][GATE] deactivation failed (holder={holder}): {e}")
                return
            logger.debug(f"[VOICE][GATE] released holder={holder}")
