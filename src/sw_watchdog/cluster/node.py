"""Watchdog process entry and orchestration.

Responsibilities:
- Own the lifecycle state machine and the lease monitor feeding it
- Serve the wire protocol (heartbeat writers, failure subscribers)
- Optionally serve the REST lifecycle API
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Callable, Dict, Optional, Set

from sw_watchdog.api.rest_api import create_app
from sw_watchdog.api.wire import create_api_server
from sw_watchdog.cluster.lifecycle import WatchdogLifecycle, WatchdogState
from sw_watchdog.cluster.liveliness import LeaseMonitor
from sw_watchdog.cluster.models import HeartbeatRecord, LivelinessEvent
from sw_watchdog.cluster.notifier import BroadcastSink, FailureSink, JsonlFileSink, MultiSink
from sw_watchdog.config.settings import WatchdogSettings
from sw_watchdog.utils.logging_config import get_logger

# Transitions after which heartbeat ingestion is stopped
_STOPS_INGESTION = ("deactivate", "cleanup", "shutdown")


class WatchdogNode:
    def __init__(self, settings: WatchdogSettings, node_id: str = "simple_watchdog",
                 clock: Callable[[], float] = time.time):
        self.settings = settings
        self.node_id = node_id
        self._clock = clock
        self._logger = get_logger("sw_watchdog.node", node_id=node_id)
        # topic -> set of StreamWriter subscribers (managed by wire.py)
        self._subs: Dict[str, Set[asyncio.StreamWriter]] = {}
        self._api_server: Optional[asyncio.AbstractServer] = None
        self._rest_server = None
        self._stopped: Optional[asyncio.Event] = None

        self.monitor = LeaseMonitor(settings.lease_duration, handler=self._on_liveliness)
        self.lifecycle = WatchdogLifecycle(
            settings.lease_duration_ms,
            history_capacity=settings.history_capacity,
            publish_failures=settings.publish_failures,
            autostart=settings.autostart,
            heartbeat_topic=settings.heartbeat_topic,
            sink_factory=self._make_sink,
            clock=clock,
            name=node_id,
        )

    # Lifecycle

    def transition(self, name: str) -> WatchdogState:
        try:
            return self.lifecycle.transition(name)
        finally:
            # A sink release error is raised after the state change took effect
            if name in _STOPS_INGESTION and not self.lifecycle.is_active:
                self.monitor.reset()
            if self.lifecycle.state is WatchdogState.FINALIZED and self._stopped is not None:
                self._stopped.set()

    def _make_sink(self) -> FailureSink:
        sinks = [BroadcastSink(self._failure_subscribers, on_dead=self.remove_writer)]
        if self.settings.failure_log:
            sinks.append(JsonlFileSink(self.settings.failure_log))
        if len(sinks) == 1:
            return sinks[0]
        return MultiSink(sinks)

    # Heartbeat and liveliness paths

    def ingest_heartbeat(self, writer_key: str, checkpoint_id: int, timestamp: float) -> bool:
        accepted = self.lifecycle.handle_heartbeat(HeartbeatRecord(checkpoint_id, timestamp))
        if accepted:
            self.monitor.assert_liveliness(writer_key, self._clock())
        else:
            self._logger.debug("heartbeat_dropped", checkpoint_id=checkpoint_id,
                               state=self.lifecycle.state.value)
        return accepted

    def writer_gone(self, writer_key: str) -> None:
        if self.lifecycle.is_active:
            self.monitor.remove(writer_key)

    def _on_liveliness(self, event: LivelinessEvent) -> None:
        self.lifecycle.handle_liveliness(event)

    # Subscribers

    def _failure_subscribers(self) -> Set[asyncio.StreamWriter]:
        return self._subs.get(self.settings.failure_topic, set())

    def add_subscriber(self, topic: str, writer: asyncio.StreamWriter) -> None:
        self._subs.setdefault(topic, set()).add(writer)

    def remove_writer(self, writer: asyncio.StreamWriter) -> None:
        for subs in self._subs.values():
            subs.discard(writer)

    # Process

    def start(self) -> None:
        """Run the watchdog until shut down or interrupted."""
        try:
            asyncio.run(self._start_async())
        except KeyboardInterrupt:
            print(f"\nWatchdog {self.node_id} shutting down...")

    async def _start_async(self) -> None:
        self._stopped = asyncio.Event()
        self._api_server = await create_api_server(self.settings.host, self.settings.port, node=self)
        tasks = [
            asyncio.create_task(self._api_server.serve_forever()),
            asyncio.create_task(self._monitor_loop()),
        ]
        if self.settings.api_port is not None:
            tasks.append(asyncio.create_task(self._serve_rest()))

        self._logger.info(
            "watchdog_started",
            wire=f"{self.settings.host}:{self.settings.port}",
            rest=self.settings.api_port,
            lease_ms=self.settings.lease_duration_ms,
            topic=self.settings.heartbeat_topic,
            state=self.lifecycle.state.value,
        )
        try:
            await self._stopped.wait()
        finally:
            if self._rest_server is not None:
                self._rest_server.should_exit = True
            for task in tasks:
                task.cancel()
            for task in tasks:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            for subs in self._subs.values():
                for writer in list(subs):
                    writer.close()
            self._subs.clear()
            self._api_server.close()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._api_server.wait_closed(), timeout=1.0)
            if self.lifecycle.state is not WatchdogState.FINALIZED:
                self.transition("shutdown")
            self._logger.info("watchdog_stopped")

    async def _monitor_loop(self) -> None:
        """Expire writer leases while heartbeats are being ingested."""
        while True:
            if self.lifecycle.is_active:
                self.monitor.check(self._clock())
            await asyncio.sleep(self.settings.monitor_interval)

    async def _serve_rest(self) -> None:
        import uvicorn

        config = uvicorn.Config(
            create_app(self),
            host=self.settings.host,
            port=self.settings.api_port,
            log_config=None,
            lifespan="off",
        )
        self._rest_server = uvicorn.Server(config)
        await self._rest_server.serve()

    def stop(self) -> None:
        if self.lifecycle.state is not WatchdogState.FINALIZED:
            self.transition("shutdown")
        elif self._stopped is not None:
            self._stopped.set()
