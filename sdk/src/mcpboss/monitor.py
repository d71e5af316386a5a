"""Deployment progress monitoring.

`DeploymentMonitor` follows the deployment log stream of a hosted function,
folds each event into a `DeploymentState` and stops at the first terminal
condition, returning an `Outcome`. It never raises for stream or payload
problems; every failure path produces an `Outcome` with `deployed` and
`stabilized` set accordingly and a `reason` telling them apart.

`CrashLogFetcher` polls the logs of a crashed pod until they show up.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import httpx

from .deployment import (
    DEPLOYMENT_LOG_EVENT,
    CrashLogs,
    DeploymentEvent,
    DeploymentState,
    EventType,
    parse_event,
    reduce,
)
from .events import StreamEvent
from .exceptions import EventStreamError, McpBossError

logger = logging.getLogger(__name__)

DEFAULT_MONITOR_TIMEOUT = 5 * 60.0  # seconds
CRASH_LOG_MAX_ATTEMPTS = 50
CRASH_LOG_RETRY_DELAY = 0.2  # seconds


class OutcomeReason(str, Enum):
    READY = "ready"
    CRASHED = "crashed"
    DONE = "done"
    STREAM_ERROR = "streamError"
    STREAM_ENDED = "streamEnded"
    PARSE_ERROR = "parseError"
    TIMEOUT = "timeout"


@dataclass
class Outcome:
    """Result of monitoring one deployment."""

    deployed: bool
    stabilized: bool
    pod_name: Optional[str] = None
    reason: OutcomeReason = OutcomeReason.DONE
    state: DeploymentState = field(default_factory=DeploymentState, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deployed": self.deployed,
            "stabilized": self.stabilized,
            "podName": self.pod_name,
            "reason": self.reason.value,
        }


class LogStream(Protocol):
    def events(self) -> Any: ...

    async def close(self) -> None: ...


class DeploymentMonitor:
    """Watches one deployment log stream until it reaches a terminal state.

    Args:
        client: McpBossClient used to open the log stream
        timeout: Wall-clock limit for the whole session in seconds
        on_update: Called with the state after every event (rendering)
        stream_factory: Builds the stream for a function id; defaults to
            `client.deployment_log_stream`
    """

    def __init__(
        self,
        client: Any = None,
        *,
        timeout: float = DEFAULT_MONITOR_TIMEOUT,
        on_update: Optional[Callable[[DeploymentState], None]] = None,
        stream_factory: Optional[Callable[[str], LogStream]] = None,
    ):
        if stream_factory is None:
            if client is None:
                raise ValueError("DeploymentMonitor needs a client or a stream_factory")
            stream_factory = client.deployment_log_stream
        self.timeout = timeout
        self.on_update = on_update
        self._stream_factory = stream_factory
        self.state = DeploymentState()
        self._stream: Optional[LogStream] = None
        self._stream_closed = False

    async def monitor(self, function_id: str, follow: bool = False) -> Outcome:
        """Follow the rollout of `function_id`.

        The session ends at the first `done`, ready main container or crashed
        main container. `follow` does not change which events end the session.
        """
        self.state = DeploymentState()
        self._stream_closed = False
        logger.info(f"Monitoring deployment of hosted function {function_id} (follow={follow})")

        try:
            self._stream = self._stream_factory(function_id)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Failed to open deployment log stream: {e}")
            return self._resolve(OutcomeReason.STREAM_ERROR)

        try:
            outcome = await asyncio.wait_for(self._consume(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await self._close_stream()
            logger.warning(f"Deployment monitoring timed out after {self.timeout:.0f}s")
            outcome = self._resolve(OutcomeReason.TIMEOUT)
        finally:
            await self._close_stream()

        logger.info(
            f"Deployment of {function_id} finished: reason={outcome.reason.value} "
            f"deployed={outcome.deployed} stabilized={outcome.stabilized}"
        )
        return outcome

    async def _consume(self) -> Outcome:
        try:
            async for message in self._stream.events():
                try:
                    outcome = self._handle(message)
                except Exception:  # noqa: BLE001
                    await self._close_stream()
                    logger.exception("Unrecoverable error while handling deployment log")
                    return self._resolve(OutcomeReason.PARSE_ERROR)

                if outcome is not None:
                    await self._close_stream()
                    return outcome
        except EventStreamError as e:
            await self._close_stream()
            logger.warning(f"Deployment log stream failed: {e}")
            self._record_connection_error()
            return self._resolve(OutcomeReason.STREAM_ERROR)
        except Exception:  # noqa: BLE001
            await self._close_stream()
            logger.exception("Deployment log stream failed unexpectedly")
            self._record_connection_error()
            return self._resolve(OutcomeReason.STREAM_ERROR)

        await self._close_stream()
        if self.state.has_crashed:
            return self._resolve(OutcomeReason.CRASHED)
        if self.state.is_ready:
            return self._resolve(OutcomeReason.READY)
        logger.warning("Deployment log stream ended before the deployment settled")
        return self._resolve(OutcomeReason.STREAM_ENDED)

    def _handle(self, message: StreamEvent) -> Optional[Outcome]:
        if message.event != DEPLOYMENT_LOG_EVENT:
            logger.debug(f"Skipping {message.event!r} event on deployment log stream")
            return None

        event = parse_event(message.data)
        self._apply(event)

        if event.type == EventType.DONE:
            return self._resolve(OutcomeReason.DONE)
        if event.type == EventType.MAIN_CONTAINER_READY:
            return self._resolve(OutcomeReason.READY)
        if event.type == EventType.MAIN_CONTAINER_CRASHED:
            return self._resolve(OutcomeReason.CRASHED)
        return None

    def _apply(self, event: DeploymentEvent) -> None:
        if event.type == EventType.ERROR:
            logger.debug(f"Deployment log error: {event.message}")
        self.state = reduce(self.state, event)
        if self.on_update is not None:
            self.on_update(self.state)

    def _record_connection_error(self) -> None:
        try:
            self._apply(DeploymentEvent.error("Connection error occurred"))
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Failed to report connection error: {e}")

    def _resolve(self, reason: OutcomeReason) -> Outcome:
        if reason == OutcomeReason.DONE:
            deployed, stabilized = True, not self.state.has_crashed
        elif reason == OutcomeReason.READY:
            deployed, stabilized = True, True
        elif reason == OutcomeReason.CRASHED:
            deployed, stabilized = True, False
        else:
            deployed, stabilized = False, False

        return Outcome(
            deployed=deployed,
            stabilized=stabilized,
            pod_name=self.state.pod_name,
            reason=reason,
            state=self.state,
        )

    async def _close_stream(self) -> None:
        if self._stream_closed or self._stream is None:
            return
        self._stream_closed = True
        try:
            await self._stream.close()
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Error closing deployment log stream: {e}")


async def monitor_deployment(
    client: Any,
    function_id: str,
    follow: bool = False,
    **kwargs: Any,
) -> Outcome:
    """Monitor a deployment with a fresh `DeploymentMonitor`."""
    return await DeploymentMonitor(client, **kwargs).monitor(function_id, follow=follow)


class CrashLogFetcher:
    """Fetches stdout/stderr of a crashed pod.

    Logs of a crashed container reach the log backend asynchronously, so the
    first requests often come back empty. The fetcher retries with a fixed
    delay until stdout is non-empty or `max_attempts` requests were made, and
    returns whatever it saw last. API errors stop the loop and return None.
    """

    def __init__(
        self,
        client: Any,
        *,
        max_attempts: int = CRASH_LOG_MAX_ATTEMPTS,
        delay: float = CRASH_LOG_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client
        self.max_attempts = max(1, max_attempts)
        self.delay = delay
        self._sleep = sleep

    async def fetch(self, pod_name: str) -> Optional[CrashLogs]:
        logs = CrashLogs()
        for attempt in range(1, self.max_attempts + 1):
            try:
                data = await self._client.get_deployment_logs(pod_name, previous=True)
            except (McpBossError, httpx.HTTPError) as e:
                logger.error(f"Failed to fetch crash logs for {pod_name}: {e}")
                return None

            logs = CrashLogs(stdout=data.get("stdout") or "", stderr=data.get("stderr") or "")
            if logs.stdout:
                logger.debug(f"Crash logs for {pod_name} available after {attempt} attempt(s)")
                return logs

            if attempt < self.max_attempts:
                await self._sleep(self.delay)

        logger.info(f"No stdout for {pod_name} after {self.max_attempts} attempts")
        return logs


async def fetch_crash_logs(client: Any, pod_name: str, **kwargs: Any) -> Optional[CrashLogs]:
    """Fetch crash logs with a fresh `CrashLogFetcher`."""
    return await CrashLogFetcher(client, **kwargs).fetch(pod_name)
