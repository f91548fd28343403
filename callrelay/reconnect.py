"""Reconnection policy for the agent leg.

A reconnect is a single delayed task per session. It is tied to the session
lifetime: teardown cancels it, and a timer that fires anyway re-checks the
session before acting, so a stale timer is a no-op.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from loguru import logger

from callrelay.session import CallSession
from callrelay.transports.base import NORMAL_CLOSURE


class ReconnectController:
    """Decides whether and when to re-run agent setup for one session.

    Args:
        session: The call the agent leg belongs to.
        action: Called (synchronously) when the delay expires and the call is
            still live. Expected to start a fresh agent setup.
        delay: Seconds to wait before acting.
        max_attempts: Reconnects allowed before giving up; None for unlimited.
            The count resets whenever the agent leg opens successfully.
    """

    def __init__(
        self,
        session: CallSession,
        action: Callable[[], Any],
        delay: float = 3.0,
        max_attempts: int | None = 5,
    ) -> None:
        self.session = session
        self.delay = delay
        self.max_attempts = max_attempts
        self._action = action
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def exhausted(self) -> bool:
        return (
            self.max_attempts is not None
            and self.session.reconnect_attempts >= self.max_attempts
        )

    def should_reconnect(self, code: int) -> bool:
        """Reconnect after a close only if it was abnormal and the call is live."""
        return (
            code != NORMAL_CLOSURE
            and self.session.is_active
            and self.session.can_reconnect
        )

    def schedule(self, reason: str = "") -> bool:
        """Schedule a reconnect. Returns True if one is now on its way."""
        if not self.session.can_reconnect:
            logger.info("[ElevenLabs] Not reconnecting as call is no longer active")
            return False
        if self.pending:
            logger.debug("[ElevenLabs] Reconnect already scheduled")
            return True
        if self.exhausted:
            logger.warning(
                f"[ElevenLabs] Giving up after {self.session.reconnect_attempts} "
                f"reconnect attempts"
            )
            return False

        self.session.reconnect_attempts += 1
        logger.info(
            f"[ElevenLabs] Attempting to reconnect in {self.delay:g} seconds"
            + (f" ({reason})" if reason else "")
        )
        self._task = asyncio.create_task(self._fire())
        return True

    async def _fire(self) -> None:
        await asyncio.sleep(self.delay)
        if not self.session.can_reconnect:
            logger.debug(
                f"[ElevenLabs] Reconnect for ended session {self.session.session_id} skipped"
            )
            return
        self._action()

    def cancel(self) -> None:
        if self.pending:
            self._task.cancel()
        self._task = None
