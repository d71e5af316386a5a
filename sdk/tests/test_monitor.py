import asyncio
import json
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

from mcpboss.deployment import DEPLOYMENT_LOG_EVENT, ContainerStatus, DeploymentState, parse_event, reduce
from mcpboss.events import StreamEvent
from mcpboss.exceptions import ApiError, EventStreamError
from mcpboss.monitor import CrashLogFetcher, DeploymentMonitor, OutcomeReason, monitor_deployment


def log(**fields) -> StreamEvent:
    return StreamEvent(event=DEPLOYMENT_LOG_EVENT, data=json.dumps(fields))


POD_INFO = log(
    type="podInfo",
    createdAt="2025-01-01T00:00:00Z",
    pod="fn-abc-123",
    initContainers=["download"],
    containers=["main"],
)


def replay(*messages: StreamEvent) -> DeploymentState:
    state = DeploymentState()
    for message in messages:
        state = reduce(state, parse_event(message.data))
    return state


class FakeStream:
    """Replays a fixed list of events, then optionally fails or hangs."""

    def __init__(self, events: List[StreamEvent], error: Exception = None, hang: bool = False):
        self._events = events
        self._error = error
        self._hang = hang
        self.delivered = 0
        self.close_calls = 0

    async def events(self):
        for event in self._events:
            self.delivered += 1
            yield event
        if self._error is not None:
            raise self._error
        if self._hang:
            await asyncio.Event().wait()

    async def close(self):
        self.close_calls += 1


def make_monitor(stream: FakeStream, **kwargs) -> DeploymentMonitor:
    return DeploymentMonitor(stream_factory=lambda function_id: stream, **kwargs)


@pytest.mark.asyncio
async def test_ready_resolves_without_waiting_for_done():
    stream = FakeStream([
        POD_INFO,
        log(type="mainContainerRunning"),
        log(type="mainContainerReady"),
        log(type="mainContainerCrashed", exitCode=1),
    ], hang=True)

    outcome = await make_monitor(stream).monitor("fn_1")

    assert outcome.deployed is True
    assert outcome.stabilized is True
    assert outcome.pod_name == "fn-abc-123"
    assert outcome.reason == OutcomeReason.READY
    assert stream.delivered == 3
    assert stream.close_calls == 1


@pytest.mark.asyncio
async def test_crash_resolves_immediately():
    stream = FakeStream([POD_INFO, log(type="mainContainerCrashed", exitCode=137, reason="OOMKilled")], hang=True)

    outcome = await make_monitor(stream).monitor("fn_1")

    assert (outcome.deployed, outcome.stabilized) == (True, False)
    assert outcome.pod_name == "fn-abc-123"
    assert outcome.reason == OutcomeReason.CRASHED
    assert outcome.state.containers["main"].status == ContainerStatus.FAILED
    assert stream.close_calls == 1


@pytest.mark.asyncio
async def test_crash_ends_session_before_done():
    stream = FakeStream([
        POD_INFO,
        log(type="mainContainerCrashed", exitCode=1),
        log(type="done"),
    ])

    outcome = await make_monitor(stream).monitor("fn_1")

    assert stream.delivered == 2
    assert outcome.reason == OutcomeReason.CRASHED
    assert not outcome.state.is_complete


def test_done_after_crash_is_not_stabilized():
    monitor = make_monitor(FakeStream([]))
    monitor.state = replay(POD_INFO, log(type="mainContainerCrashed", exitCode=1), log(type="done"))

    outcome = monitor._resolve(OutcomeReason.DONE)

    assert (outcome.deployed, outcome.stabilized) == (True, False)


@pytest.mark.asyncio
async def test_done_without_crash_is_stabilized():
    stream = FakeStream([POD_INFO, log(type="done")], hang=True)

    outcome = await make_monitor(stream).monitor("fn_1")

    assert outcome.reason == OutcomeReason.DONE
    assert (outcome.deployed, outcome.stabilized) == (True, True)
    assert outcome.state.is_complete


@pytest.mark.asyncio
async def test_follow_resolves_on_ready():
    stream = FakeStream([POD_INFO, log(type="mainContainerRunning"), log(type="mainContainerReady")], hang=True)

    outcome = await make_monitor(stream, timeout=5).monitor("fn_1", follow=True)

    assert outcome.reason == OutcomeReason.READY
    assert (outcome.deployed, outcome.stabilized) == (True, True)
    assert outcome.pod_name == "fn-abc-123"
    assert stream.close_calls == 1


@pytest.mark.asyncio
async def test_follow_resolves_on_crash():
    stream = FakeStream([POD_INFO, log(type="mainContainerCrashed", exitCode=137, reason="OOMKilled")], hang=True)

    outcome = await make_monitor(stream, timeout=5).monitor("fn_1", follow=True)

    assert outcome.reason == OutcomeReason.CRASHED
    assert (outcome.deployed, outcome.stabilized) == (True, False)
    assert outcome.pod_name == "fn-abc-123"
    assert stream.close_calls == 1


@pytest.mark.asyncio
async def test_crash_back_off_keeps_monitoring():
    stream = FakeStream([
        POD_INFO,
        log(type="mainContainerCrashBackOff", reason="CrashLoopBackOff", restarts=1),
        log(type="mainContainerReady"),
    ])

    outcome = await make_monitor(stream).monitor("fn_1")

    assert stream.delivered == 3
    assert outcome.reason == OutcomeReason.READY
    assert outcome.stabilized is True


@pytest.mark.asyncio
async def test_stream_error_before_pod_info():
    stream = FakeStream([], error=EventStreamError("connection refused"))

    outcome = await make_monitor(stream).monitor("fn_1")

    assert (outcome.deployed, outcome.stabilized) == (False, False)
    assert outcome.pod_name is None
    assert outcome.reason == OutcomeReason.STREAM_ERROR
    assert outcome.state.errors == ["Connection error occurred"]
    assert stream.close_calls == 1


@pytest.mark.asyncio
async def test_stream_factory_failure():
    def factory(function_id):
        raise EventStreamError("boom")

    outcome = await DeploymentMonitor(stream_factory=factory).monitor("fn_1")

    assert outcome.reason == OutcomeReason.STREAM_ERROR
    assert outcome.deployed is False


@pytest.mark.asyncio
async def test_stream_ended_without_terminal_event():
    stream = FakeStream([POD_INFO, log(type="mainContainerRunning")])

    outcome = await make_monitor(stream).monitor("fn_1")

    assert outcome.reason == OutcomeReason.STREAM_ENDED
    assert (outcome.deployed, outcome.stabilized) == (False, False)
    assert outcome.pod_name == "fn-abc-123"
    assert stream.close_calls == 1


@pytest.mark.asyncio
async def test_timeout():
    stream = FakeStream([POD_INFO], hang=True)

    outcome = await make_monitor(stream, timeout=0.05).monitor("fn_1")

    assert outcome.reason == OutcomeReason.TIMEOUT
    assert (outcome.deployed, outcome.stabilized) == (False, False)
    assert outcome.pod_name == "fn-abc-123"
    assert stream.close_calls == 1


@pytest.mark.asyncio
async def test_malformed_payloads_do_not_stop_monitoring():
    stream = FakeStream([
        POD_INFO,
        StreamEvent(event=DEPLOYMENT_LOG_EVENT, data="{oops"),
        log(type="mainContainerReady"),
    ])

    outcome = await make_monitor(stream).monitor("fn_1")

    assert outcome.reason == OutcomeReason.READY
    assert len(outcome.state.errors) == 1
    assert outcome.state.errors[0].startswith("Failed to parse deployment log:")


@pytest.mark.asyncio
async def test_other_event_names_are_skipped():
    updates = []
    stream = FakeStream([
        POD_INFO,
        StreamEvent(event="message", data="ping"),
        StreamEvent(event="Heartbeat", data="{}"),
        log(type="mainContainerReady"),
    ])

    outcome = await make_monitor(stream, on_update=updates.append).monitor("fn_1")

    assert outcome.reason == OutcomeReason.READY
    assert outcome.state.errors == []
    assert len(updates) == 2


@pytest.mark.asyncio
async def test_on_update_called_per_event():
    updates = []
    stream = FakeStream([POD_INFO, log(type="mainContainerRunning"), log(type="mainContainerReady")])

    await make_monitor(stream, on_update=updates.append).monitor("fn_1")

    assert len(updates) == 3
    assert updates[0].containers["main"].status == ContainerStatus.PENDING
    assert updates[-1].is_ready


@pytest.mark.asyncio
async def test_update_callback_failure_resolves_parse_error():
    stream = FakeStream([POD_INFO, log(type="mainContainerReady")])
    on_update = MagicMock(side_effect=RuntimeError("render failed"))

    outcome = await make_monitor(stream, on_update=on_update).monitor("fn_1")

    assert outcome.reason == OutcomeReason.PARSE_ERROR
    assert outcome.deployed is False
    assert stream.close_calls == 1


@pytest.mark.asyncio
async def test_close_errors_are_swallowed():
    stream = FakeStream([POD_INFO, log(type="mainContainerReady")])
    stream.close = AsyncMock(side_effect=RuntimeError("already closed"))

    outcome = await make_monitor(stream).monitor("fn_1")

    assert outcome.stabilized is True
    stream.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_monitor_deployment_uses_client_stream():
    stream = FakeStream([POD_INFO, log(type="mainContainerReady")])
    client = MagicMock()
    client.deployment_log_stream.return_value = stream

    outcome = await monitor_deployment(client, "fn_42")

    client.deployment_log_stream.assert_called_once_with("fn_42")
    assert outcome.stabilized is True


def test_monitor_requires_client_or_factory():
    with pytest.raises(ValueError):
        DeploymentMonitor()


class FakeLogsClient:
    def __init__(self, available_on: int = None, error: Exception = None):
        self.available_on = available_on
        self.error = error
        self.calls = 0

    async def get_deployment_logs(self, pod_name, previous=True):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.available_on is not None and self.calls >= self.available_on:
            return {"stdout": "Error: Cannot find module 'express'", "stderr": "trace"}
        return {"stdout": "", "stderr": ""}


@pytest.mark.asyncio
async def test_crash_logs_available_on_tenth_attempt():
    client = FakeLogsClient(available_on=10)
    sleep = AsyncMock()

    logs = await CrashLogFetcher(client, sleep=sleep).fetch("fn-abc-123")

    assert client.calls == 10
    assert logs.stdout == "Error: Cannot find module 'express'"
    assert logs.stderr == "trace"
    assert sleep.await_count == 9
    sleep.assert_awaited_with(0.2)


@pytest.mark.asyncio
async def test_crash_logs_permanently_empty():
    client = FakeLogsClient()
    sleep = AsyncMock()

    logs = await CrashLogFetcher(client, sleep=sleep).fetch("fn-abc-123")

    assert client.calls == 50
    assert (logs.stdout, logs.stderr) == ("", "")
    assert logs.empty
    assert sleep.await_count == 49


@pytest.mark.asyncio
async def test_crash_logs_api_error_returns_none():
    client = FakeLogsClient(error=ApiError("pod not found", status_code=404))
    sleep = AsyncMock()

    logs = await CrashLogFetcher(client, sleep=sleep).fetch("fn-abc-123")

    assert logs is None
    assert client.calls == 1
    sleep.assert_not_awaited()
