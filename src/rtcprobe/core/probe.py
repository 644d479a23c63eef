"""
Probe facade.

A probe watches one real-time session: it owns a collector and exposes the
report and ticket callbacks as plain properties.
"""

import logging
from typing import Any, Callable, Dict, Optional, Union

from rtcprobe.core.config import Config
from rtcprobe.stats.collector import CALLBACK_REPORT, CALLBACK_TICKET, Collector, create_collector_id
from rtcprobe.stats.models import EventCategory, Report, SessionState, Ticket
from rtcprobe.stats.observer import EventSource
from rtcprobe.stats.source import SnapshotSource

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "rtcprobe"


def set_verbose_log(verbose: bool) -> None:
    """Switch the package loggers between debug and info."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)
    logger.info(f"Log level set to {'verbose' if verbose else 'info'}")


class Probe:
    """
    Collects statistics for one session.

    Assign callables to ``onreport`` and ``onticket`` to receive every report
    and the final ticket; assign ``None`` to unregister.
    """

    def __init__(self, config: Optional[Config] = None, source: Optional[SnapshotSource] = None):
        """
        Initialize the probe.

        Args:
            config: Probe configuration. Defaults apply when None.
            source: The snapshot source to poll.
        """
        self._config = config or Config()
        self._id = create_collector_id()

        if self._config.verbose_log:
            set_verbose_log(True)

        issues = self._config.validate()
        for issue in issues:
            logger.error(f"{self._id}: invalid configuration - {issue}")
        self._configured = not issues

        self._collector = Collector(self._config, source, probe_id=self._id)
        logger.info(f"{self._id}: probe created for session '{self._config.session.name}'")

    def _set_callback(self, name: str, callback: Optional[Callable]) -> None:
        if callback:
            self._collector.register_callback(name, callback)
        else:
            self._collector.unregister_callback(name)

    @property
    def onreport(self) -> Optional[Callable[[Report], None]]:
        return self._collector.get_callback(CALLBACK_REPORT)

    @onreport.setter
    def onreport(self, callback: Optional[Callable[[Report], None]]) -> None:
        """Fired for every report appended to the history."""
        self._set_callback(CALLBACK_REPORT, callback)

    @property
    def onticket(self) -> Optional[Callable[[Ticket], None]]:
        return self._collector.get_callback(CALLBACK_TICKET)

    @onticket.setter
    def onticket(self, callback: Optional[Callable[[Ticket], None]]) -> None:
        """Fired once when the session stops."""
        self._set_callback(CALLBACK_TICKET, callback)

    @property
    def id(self) -> str:
        return self._id

    @property
    def session_name(self) -> str:
        return self._config.session.name

    @property
    def call_id(self) -> str:
        return self._config.session.call_id

    @call_id.setter
    def call_id(self, value: str) -> None:
        self._config.session.call_id = value

    @property
    def user_id(self) -> str:
        return self._config.session.user_id

    @user_id.setter
    def user_id(self, value: str) -> None:
        self._config.session.user_id = value

    @property
    def state(self) -> SessionState:
        return self._collector.state

    @property
    def is_configured(self) -> bool:
        return self._configured

    @property
    def collector(self) -> Collector:
        return self._collector

    def start(self) -> None:
        """Start collecting; requires a valid configuration."""
        if not self._configured:
            logger.error(f"{self._id}: can't start - configuration is invalid")
            return
        logger.info(
            f"{self._id}: analyze started every {self._config.sampling.refresh_every_ms}ms"
        )
        self._collector.start()

    def stop(self) -> None:
        self._collector.stop()

    def mute(self) -> None:
        self._collector.mute()

    def unmute(self) -> None:
        self._collector.unmute()

    async def wait(self) -> None:
        """Wait for the session to end."""
        await self._collector.wait()

    def attach(self, source: EventSource) -> None:
        self._collector.attach(source)

    def add_custom_event(
        self,
        timestamp: Optional[float],
        category: Union[EventCategory, str],
        name: str,
        description: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._collector.add_custom_event(timestamp, category, name, description, data)
