"""Turn daemon signals and external requests into debounced refresh passes."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Mapping

from .config import PanelConfig
from .errors import PanelError
from .panel import PanelVisibility

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .bluetooth import BluetoothManager
    from .controller import PanelController


logger = logging.getLogger(__name__)


class DebouncedTrigger:
    """Coalesce bursts of :meth:`fire` calls into one run of ``action``.

    The action runs ``interval`` seconds after the first fire of a burst;
    fires arriving while it runs schedule exactly one more run.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        action: Callable[[], Awaitable[object]],
    ) -> None:
        if interval < 0:
            raise ValueError("interval must not be negative")
        self.name = name
        self._interval = float(interval)
        self._action = action
        self._task: asyncio.Task[None] | None = None
        self._pending: asyncio.Event | None = None
        self._stop_event: asyncio.Event | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is not None:
            return
        loop = asyncio.get_running_loop()
        self._pending = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._task = loop.create_task(self._run(), name=f"debounce-{self.name}")

    def fire(self) -> None:
        """Request a run; must be called on the event loop thread."""

        if self._pending is not None:
            self._pending.set()

    async def aclose(self) -> None:
        task = self._task
        if task is None:
            return
        assert self._stop_event is not None and self._pending is not None
        self._stop_event.set()
        self._pending.set()
        try:
            await task
        finally:
            self._task = None
            self._pending = None
            self._stop_event = None

    async def _run(self) -> None:
        assert self._pending is not None and self._stop_event is not None
        while True:
            await self._pending.wait()
            if self._stop_event.is_set():
                return
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                return
            except asyncio.TimeoutError:
                pass
            self._pending.clear()
            self.runs += 1
            try:
                await self._action()
            except Exception:
                logger.exception("Debounced %s refresh failed", self.name)


class LiveUpdateDispatcher:
    """Subscribe to daemon signals and keep the panel state current."""

    def __init__(
        self,
        controller: "PanelController",
        visibility: PanelVisibility,
        config: PanelConfig,
    ) -> None:
        self._controller = controller
        self._visibility = visibility
        self._poll_interval = config.poll_interval
        self.state_trigger = DebouncedTrigger(
            "state-changed", config.state_debounce, controller.handle_device_state_changed
        )
        self.access_point_trigger = DebouncedTrigger(
            "access-point-added", config.access_point_debounce, controller.refresh_networks
        )
        self.bluetooth_trigger = DebouncedTrigger(
            "bluetooth-added", config.bluetooth_debounce, controller.refresh_devices
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._unsubscribers: list[Callable[[], None]] = []
        self._poll_task: asyncio.Task[None] | None = None
        self._bluetooth_task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    async def start(self) -> None:
        if self._poll_task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        for trigger in self._triggers():
            trigger.start()
        self._poll_task = self._loop.create_task(self._poll(), name="panel-flags")
        self._bluetooth_task = self._loop.create_task(
            self._subscribe_bluetooth(), name="bluetooth-signals"
        )
        await self._subscribe_network()

    async def aclose(self) -> None:
        if self._poll_task is None:
            return
        assert self._stop_event is not None
        self._stop_event.set()
        for unsubscribe in self._unsubscribers:
            try:
                unsubscribe()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to remove signal subscription", exc_info=True)
        self._unsubscribers.clear()
        if self._bluetooth_task is not None:
            self._bluetooth_task.cancel()
            try:
                await self._bluetooth_task
            except asyncio.CancelledError:
                pass
        await self._poll_task
        for trigger in self._triggers():
            await trigger.aclose()
        self._poll_task = None
        self._bluetooth_task = None
        self._stop_event = None

    # ------------------------------- signals -------------------------------
    async def _subscribe_network(self) -> None:
        wifi = self._controller.wifi
        if wifi is None:
            return
        backend = wifi.backend
        try:
            self._unsubscribers.append(
                await asyncio.to_thread(
                    backend.subscribe_state_changed, wifi.device, self._on_state_changed
                )
            )
            self._unsubscribers.append(
                await asyncio.to_thread(
                    backend.subscribe_access_point_added, wifi.device, self._on_access_point_added
                )
            )
        except PanelError as exc:
            logger.warning("Live Wi-Fi updates disabled: %s", exc)

    async def _subscribe_bluetooth(self) -> None:
        manager: BluetoothManager | None = await asyncio.shield(self._controller.bluetooth_ready)
        if manager is None:
            return
        try:
            unsubscribe = await asyncio.to_thread(
                manager.backend.subscribe_interfaces_added, self._on_interfaces_added
            )
        except PanelError as exc:
            logger.warning("Live Bluetooth updates disabled: %s", exc)
            return
        self._unsubscribers.append(unsubscribe)

    def _on_state_changed(self, new_state: int, old_state: int, reason: int) -> None:
        logger.debug("Device state %s -> %s (reason %s)", old_state, new_state, reason)
        self._marshal(self.state_trigger.fire)

    def _on_access_point_added(self, path: str) -> None:
        logger.debug("Access point added: %s", path)
        self._marshal(self.access_point_trigger.fire)

    def _on_interfaces_added(self, path: str, interfaces: Mapping[str, object]) -> None:
        self._marshal(self._bluetooth_object_added)

    def _bluetooth_object_added(self) -> None:
        if self._controller.bluetooth_view_active:
            self.bluetooth_trigger.fire()

    def _marshal(self, callback: Callable[[], None]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback)

    # -------------------------------- flags --------------------------------
    async def _poll(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                continue

    async def poll_once(self) -> None:
        try:
            if self._visibility.consume_refresh():
                await self._controller.on_panel_shown()
            if self._visibility.consume_reload():
                await self._controller.reload_config()
        except Exception:
            logger.exception("Handling panel request failed")

    def _triggers(self) -> tuple[DebouncedTrigger, ...]:
        return (self.state_trigger, self.access_point_trigger, self.bluetooth_trigger)


__all__ = ["DebouncedTrigger", "LiveUpdateDispatcher"]
