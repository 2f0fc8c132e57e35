"""Background polling of motion and AI detection state.

The device offers no push channel over this API, so ``EventPoller`` polls
``GetMdState`` and ``GetAiState`` per channel on a fixed interval and emits
an event only when a channel's state differs from the previous tick. The
first tick seeds the cache and emits nothing.
"""

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .exceptions import ReolinkError
from .logging_config import log_debug, log_exception
from .models import AiEvent, MotionEvent

if TYPE_CHECKING:
    from .session import ReolinkSession

MOTION = "motion"
AI = "ai"
EVENT_NAMES = (MOTION, AI)

# Device spellings for each reported AI class
AI_STATE_KEYS: dict[str, tuple[str, ...]] = {
    "people": ("people", "person"),
    "vehicle": ("vehicle",),
    "dog_cat": ("dog_cat", "pet"),
    "face": ("face",),
    "package": ("package",),
}

Listener = Callable[[Any], None]


def _is_active(state: Any) -> bool:
    if isinstance(state, bool):
        return state
    if isinstance(state, int):
        return state == 1
    if isinstance(state, dict):
        return state.get("alarm_state", state.get("state")) == 1
    return False


def parse_ai_state(payload: Any) -> list[str]:
    """Return the AI classes reported active in a GetAiState value.

    Args:
        payload: ``GetAiState`` value, either flat or nested under ``value``.

    Returns:
        Active class names in a stable order.
    """
    if not isinstance(payload, dict):
        return []
    data = payload.get("value") if isinstance(payload.get("value"), dict) else payload
    active: list[str] = []
    for name, keys in AI_STATE_KEYS.items():
        if any(_is_active(data.get(key)) for key in keys):
            active.append(name)
    return active


def parse_motion_state(payload: Any) -> bool:
    """Return True when a GetMdState value reports motion."""
    if not isinstance(payload, dict):
        return False
    if isinstance(payload.get("value"), dict):
        payload = payload["value"]
    return _is_active(payload.get("state"))


class EventPoller:
    """Polls a session for motion and AI state changes.

    Listeners are plain callables registered per event name ("motion" or
    "ai"). ``stop()`` is synchronous: it cancels the polling task and drops
    all listeners without waiting for an in-flight tick.

    Example:
        >>> poller = session.create_poller(interval=2.0)
        >>> poller.on("motion", lambda e: print(e.channel, e.active))
        >>> poller.start()
    """

    def __init__(
        self,
        session: "ReolinkSession",
        interval: float = 1.0,
        channels: list[int] | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("Poll interval must be positive")
        self._session = session
        self.interval = interval
        self._channels = list(channels) if channels is not None else None
        self._listeners: dict[str, list[Listener]] = {name: [] for name in EVENT_NAMES}
        self._motion: dict[int, bool] = {}
        self._ai: dict[int, tuple[str, ...]] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Args:
            event: "motion" or "ai".
            listener: Called with a MotionEvent or AiEvent.

        Returns:
            A callable that unregisters the listener.
        """
        if event not in self._listeners:
            raise ValueError(f"Unknown event '{event}', expected one of {', '.join(EVENT_NAMES)}")
        self._listeners[event].append(listener)
        return lambda: self.off(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def start(self) -> None:
        """Start polling on the running event loop. No-op if already running."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        """Cancel polling and drop every listener."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
        for listeners in self._listeners.values():
            listeners.clear()

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except ReolinkError as e:
                log_debug(f"Event poll failed: {e}")
            await asyncio.sleep(self.interval)

    async def _resolve_channels(self) -> list[int]:
        if self._channels is not None:
            return self._channels
        try:
            info = await self._session.call("GetDevInfo")
            dev = info.get("DevInfo") if isinstance(info, dict) else None
            count = dev.get("channelNum", 0) if isinstance(dev, dict) else 0
        except ReolinkError as e:
            log_debug(f"GetDevInfo failed, polling channel 0 only: {e}")
            count = 0
        self._channels = list(range(count)) if isinstance(count, int) and count > 0 else [0]
        return self._channels

    async def poll_once(self) -> None:
        """Run one polling tick over every channel."""
        for channel in await self._resolve_channels():
            await self._check_motion(channel)
            await self._check_ai(channel)

    async def _check_motion(self, channel: int) -> None:
        try:
            payload = await self._session.call("GetMdState", {"channel": channel})
        except ReolinkError as e:
            log_debug(f"GetMdState failed on channel {channel}: {e}")
            return
        active = parse_motion_state(payload)
        previous = self._motion.get(channel)
        self._motion[channel] = active
        if previous is not None and previous != active:
            self._emit(MOTION, MotionEvent(channel=channel, active=active))

    async def _check_ai(self, channel: int) -> None:
        try:
            payload = await self._session.call("GetAiState", {"channel": channel})
        except ReolinkError as e:
            log_debug(f"GetAiState failed on channel {channel}: {e}")
            return
        types = tuple(parse_ai_state(payload))
        previous = self._ai.get(channel)
        self._ai[channel] = types
        if previous is not None and previous != types:
            self._emit(AI, AiEvent(channel=channel, active=bool(types), types=list(types)))

    def _emit(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(payload)
            except Exception:
                log_exception(f"Listener for '{event}' raised")
