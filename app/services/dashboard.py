"""
Dashboard State — The one connected session, queue and poller.

Held on app.state and handed to routes as a dependency. Connecting with new
credentials invalidates the token and name caches and replaces the poller.
"""

from __future__ import annotations

import logging

from app.config import settings
from app.services.telemetry.core import fetch_metrics
from app.services.telemetry.poller import MetricsPoller
from app.services.telephony.auth import TelephonySession
from app.services.telephony.client import find_queue_id

logger = logging.getLogger(__name__)


class DashboardState:
    """Session-scoped state for the dashboard API."""

    def __init__(self) -> None:
        self.session: TelephonySession | None = None
        self.poller: MetricsPoller | None = None
        self.queue_name: str | None = None

    @property
    def connected(self) -> bool:
        return self.poller is not None

    async def connect(
        self,
        client_id: str,
        client_secret: str,
        queue_name: str,
        region: str | None = None,
    ) -> MetricsPoller:
        """Authenticate, resolve the queue and start polling it.

        Raises TelephonyError subclasses; on failure the previous connection
        (if any) has already been torn down.
        """
        await self.disconnect()

        if self.session is None:
            self.session = TelephonySession(client_id, client_secret, region)
        else:
            self.session.update_credentials(client_id, client_secret, region)
            self.session.invalidate()

        queue_id = await find_queue_id(self.session, queue_name)

        self.queue_name = queue_name.strip()
        self.poller = MetricsPoller(
            self.session,
            queue_id,
            fetch=fetch_metrics,
            interval_seconds=settings.poll_interval_seconds,
        )
        self.poller.start()
        logger.info("Connected to queue %s (%s)", self.queue_name, queue_id)
        return self.poller

    async def disconnect(self) -> None:
        if self.poller is not None:
            await self.poller.stop()
        self.poller = None
        self.queue_name = None
        if self.session is not None:
            self.session.invalidate()
