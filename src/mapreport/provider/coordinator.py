"""Provider load coordinator.

This is the only component allowed to load the mapping provider. It owns
the process-wide :class:`ProviderLoadState`, issues at most one outbound
script request per attempt, coalesces every caller into one FIFO queue of
pending callbacks, and walks the degradation chain on failure or timeout.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from mapreport._redact import redact_url
from mapreport.config import MapReportConfig
from mapreport.exceptions import MapReportConfigError, ProviderLoadError, ProviderTimeoutError
from mapreport.models.provider import ProviderKind, ProviderLoadState
from mapreport.provider.chain import DegradationChain, LoadStrategy, SdkFactory
from mapreport.provider.channel import RequestCallback, ResourceChannel
from mapreport.provider.handles import NullProvider, ProviderHandle
from mapreport.provider.loader import ScriptLoader

_logger = logging.getLogger(__name__)

DEGRADED_NOTICE = "The map is unavailable right now. Reports can still be added and are saved."

ProviderCallback = Callable[[ProviderHandle], None]


@dataclass(frozen=True, slots=True)
class PendingCallback:
    """A queued unit of work waiting for the load to settle."""

    id: int
    callback: ProviderCallback


def _resolve_future(future: asyncio.Future[ProviderHandle], handle: ProviderHandle) -> None:
    if not future.done():
        future.set_result(handle)


class ProviderLoadCoordinator:
    """Single authority over loading the mapping provider.

    Usage::

        coordinator = ProviderLoadCoordinator.from_config(config, loader=loader)
        handle = await coordinator.ensure_loaded()
    """

    def __init__(
        self,
        chain: DegradationChain,
        channel: ResourceChannel,
        *,
        provider_url: str,
        default_timeout: float = 15.0,
        on_notice: Callable[[str], None] | None = None,
    ) -> None:
        self._chain = chain
        self._channel = channel
        self._provider_url = provider_url
        self._default_timeout = default_timeout
        self._on_notice = on_notice

        self._state = ProviderLoadState.UNLOADED
        self._handle: ProviderHandle | None = None
        self._generation = 0
        self._request_count = 0
        self._ids = itertools.count(1)
        self._queue: deque[PendingCallback] = deque()
        self._timeout = default_timeout
        self._timer: asyncio.TimerHandle | None = None
        self._attempt: asyncio.Task[None] | None = None
        self._abandoned: set[asyncio.Task[None]] = set()
        self._notice_sent = False
        self._closed = False

        channel.register(self)

    @classmethod
    def from_config(
        cls,
        config: MapReportConfig,
        *,
        loader: ScriptLoader,
        sdk_factory: SdkFactory | None = None,
        surface_options: dict[str, Any] | None = None,
        on_notice: Callable[[str], None] | None = None,
    ) -> ProviderLoadCoordinator:
        chain = DegradationChain.default(config, sdk_factory=sdk_factory, surface_options=surface_options)
        return cls(
            chain,
            ResourceChannel(loader),
            provider_url=config.provider_url,
            default_timeout=config.load_timeout,
            on_notice=on_notice,
        )

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ProviderLoadState:
        return self._state

    @property
    def handle(self) -> ProviderHandle | None:
        return self._handle

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def request_count(self) -> int:
        """Outbound provider script requests issued so far."""
        return self._request_count

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def channel(self) -> ResourceChannel:
        return self._channel

    @property
    def chain(self) -> DegradationChain:
        return self._chain

    @property
    def is_degraded(self) -> bool:
        """Whether the active handle is a fallback rather than the real provider."""
        return self._handle is not None and self._handle.kind != ProviderKind.REAL

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def ensure_loaded(self, timeout: float | None = None) -> ProviderHandle:
        """Return the provider handle, loading the provider at most once.

        Parameters
        ----------
        timeout
            Seconds a load attempt may take before the chain advances.  Only
            used by the call that starts the load.
        """
        if self._state.is_settled and self._handle is not None:
            return self._handle

        future: asyncio.Future[ProviderHandle] = asyncio.get_running_loop().create_future()
        self._enqueue(lambda handle: _resolve_future(future, handle))
        if self._state == ProviderLoadState.UNLOADED:
            self._start(timeout)
        return await future

    def when_loaded(self, callback: ProviderCallback) -> int:
        """Register *callback* to receive the handle once the load settles.

        Returns the pending callback id.  When the load has already settled the
        callback is scheduled on the loop rather than called re-entrantly.
        """
        if self._state.is_settled and self._handle is not None:
            pending = PendingCallback(next(self._ids), callback)
            asyncio.get_running_loop().call_soon(self._invoke, pending, self._handle)
            return pending.id

        pending = self._enqueue(callback)
        if self._state == ProviderLoadState.UNLOADED:
            self._start(None)
        return pending.id

    def intercept(self, url: str, callback: RequestCallback | None) -> bool:
        """Claim duplicate provider script requests made outside the coordinator."""
        if not url.startswith(self._provider_url):
            return False

        _logger.warning("Suppressed duplicate provider script request %s (state=%s)", redact_url(url), self._state)
        if callback is None:
            if self._state == ProviderLoadState.UNLOADED:
                self._start(None)
            return True

        self.when_loaded(callback)
        return True

    def close(self) -> None:
        """Tear down timers and tasks.

        An unsettled coordinator settles on the inert stub, so callers still
        waiting and any later callers resolve with it.
        """
        if self._closed:
            return
        self._closed = True
        self._cancel_timer()
        if self._attempt is not None:
            self._attempt.cancel()
            self._attempt = None
        for task in list(self._abandoned):
            task.cancel()
        self._abandoned.clear()
        self._channel.unregister(self)
        self._channel.close()
        if not self._state.is_settled:
            self._generation += 1
            self._settle(ProviderLoadState.DEGRADED, NullProvider(), notify=False)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _enqueue(self, callback: ProviderCallback) -> PendingCallback:
        pending = PendingCallback(next(self._ids), callback)
        self._queue.append(pending)
        return pending

    def _start(self, timeout: float | None) -> None:
        self._timeout = timeout if timeout is not None and timeout > 0 else self._default_timeout
        strategy = self._chain.current
        if strategy is None:
            self._settle(ProviderLoadState.DEGRADED, NullProvider())
            return
        self._begin_attempt(strategy)

    def _begin_attempt(self, strategy: LoadStrategy) -> None:
        self._generation += 1
        generation = self._generation
        self._state = ProviderLoadState.LOADING
        _logger.debug("Provider load attempt %d using %s", generation, strategy.name)

        loop = asyncio.get_running_loop()
        self._attempt = loop.create_task(self._run_attempt(strategy, generation))
        self._timer = loop.call_later(self._timeout, self._on_timeout, generation, strategy)

    async def _issue_request(self, url: str) -> Any:
        self._request_count += 1
        return await self._channel.dispatch(url)

    async def _run_attempt(self, strategy: LoadStrategy, generation: int) -> None:
        try:
            handle = await strategy.attempt(self._issue_request)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._on_attempt_failed(generation, strategy, exc)
            return
        self._on_attempt_succeeded(generation, strategy, handle)

    def _on_attempt_succeeded(self, generation: int, strategy: LoadStrategy, handle: ProviderHandle) -> None:
        if generation != self._generation:
            _logger.debug("Ignoring late result of abandoned attempt %d (%s)", generation, strategy.name)
            return
        self._cancel_timer()
        self._attempt = None
        if handle.kind == ProviderKind.NULL:
            self._settle(ProviderLoadState.DEGRADED, handle)
        else:
            _logger.debug("Provider ready via %s (%s)", strategy.name, handle.kind)
            self._settle(ProviderLoadState.LOADED, handle)

    def _on_attempt_failed(self, generation: int, strategy: LoadStrategy, exc: Exception) -> None:
        if generation != self._generation:
            _logger.debug("Ignoring late failure of abandoned attempt %d (%s)", generation, strategy.name)
            return
        self._cancel_timer()
        self._attempt = None
        error = exc if isinstance(exc, ProviderLoadError) else ProviderLoadError(str(exc), strategy=strategy.name)
        _logger.warning("Provider load via %s failed: %s", strategy.name, error)
        self._fail_and_advance()

    def _on_timeout(self, generation: int, strategy: LoadStrategy) -> None:
        if generation != self._generation or self._state != ProviderLoadState.LOADING:
            return
        self._timer = None
        # No real cancellation: the in-flight request is abandoned and its
        # eventual result ignored through the generation check.
        self._generation += 1
        attempt = self._attempt
        self._attempt = None
        if attempt is not None and not attempt.done():
            self._abandoned.add(attempt)
            attempt.add_done_callback(self._abandoned.discard)
        error = ProviderTimeoutError(
            f"Provider load via {strategy.name} timed out after {self._timeout:.1f}s",
            strategy=strategy.name,
        )
        _logger.warning("%s", error)
        self._fail_and_advance()

    def _fail_and_advance(self) -> None:
        self._state = ProviderLoadState.FAILED
        following = self._chain.next()
        if following is None:
            self._settle(ProviderLoadState.DEGRADED, NullProvider())
            return
        self._begin_attempt(following)

    def _settle(self, state: ProviderLoadState, handle: ProviderHandle, *, notify: bool = True) -> None:
        self._state = state
        self._handle = handle
        drained = 0
        while self._queue:
            pending = self._queue.popleft()
            self._invoke(pending, handle)
            drained += 1
        _logger.debug("Provider load settled as %s; delivered %d pending callback(s)", state, drained)
        if state == ProviderLoadState.DEGRADED and notify:
            self._send_notice()

    def _invoke(self, pending: PendingCallback, handle: ProviderHandle) -> None:
        try:
            pending.callback(handle)
        except Exception:
            _logger.warning("Pending provider callback %d failed", pending.id, exc_info=True)

    def _send_notice(self) -> None:
        if self._notice_sent or self._on_notice is None:
            return
        self._notice_sent = True
        notice = self._on_notice

        def _deliver() -> None:
            try:
                notice(DEGRADED_NOTICE)
            except Exception:
                _logger.debug("Degraded notice callback failed", exc_info=True)

        try:
            asyncio.get_running_loop().call_soon(_deliver)
        except RuntimeError:
            _deliver()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


# ----------------------------------------------------------------------
# Process-wide accessor
# ----------------------------------------------------------------------

_coordinator: ProviderLoadCoordinator | None = None


def get_coordinator(
    config: MapReportConfig | None = None,
    *,
    loader: ScriptLoader | None = None,
    sdk_factory: SdkFactory | None = None,
    on_notice: Callable[[str], None] | None = None,
) -> ProviderLoadCoordinator:
    """Return the process-wide coordinator, creating it on first use."""
    global _coordinator
    if _coordinator is None:
        if loader is None:
            raise MapReportConfigError("the first get_coordinator() call must supply a script loader")
        _coordinator = ProviderLoadCoordinator.from_config(
            config or MapReportConfig(),
            loader=loader,
            sdk_factory=sdk_factory,
            on_notice=on_notice,
        )
    return _coordinator


def reset_coordinator() -> None:
    """Discard the process-wide coordinator (the equivalent of a page reload)."""
    global _coordinator
    if _coordinator is not None:
        _coordinator.close()
    _coordinator = None
