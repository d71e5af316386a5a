"""Deployment progress state and the event reducer.

The deployment log stream describes a pod rollout as a sequence of typed
events (`podInfo`, `initContainerRunning`, ..., `done`). `parse_event` turns a
raw payload into a `DeploymentEvent` and `reduce` folds events into a
`DeploymentState`:

    state = DeploymentState()
    for payload in payloads:
        state = reduce(state, parse_event(payload))

Neither function raises for malformed input; problems are recorded in
`state.errors` as `error` events.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEPLOYMENT_LOG_EVENT = "DeploymentLogPayload"


class ContainerKind(str, Enum):
    INIT = "init"
    MAIN = "main"


class ContainerStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    READY = "ready"
    CRASH_BACK_OFF = "crashBackOff"


# A running event never moves a container out of these
SETTLED_STATUSES = frozenset({
    ContainerStatus.COMPLETED,
    ContainerStatus.FAILED,
    ContainerStatus.READY,
})


class EventType(str, Enum):
    POD_INFO = "podInfo"
    INIT_CONTAINER_RUNNING = "initContainerRunning"
    INIT_CONTAINER_TERMINATED = "initContainerTerminated"
    MAIN_CONTAINER_RUNNING = "mainContainerRunning"
    MAIN_CONTAINER_READY = "mainContainerReady"
    MAIN_CONTAINER_CRASHED = "mainContainerCrashed"
    MAIN_CONTAINER_CRASH_BACK_OFF = "mainContainerCrashBackOff"
    ERROR = "error"
    DONE = "done"


@dataclass(frozen=True)
class PodInfo:
    created_at: str
    pod_name: str
    init_container_names: Tuple[str, ...] = ()
    main_container_names: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ContainerRecord:
    name: str
    kind: ContainerKind
    status: ContainerStatus = ContainerStatus.PENDING
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    exit_code: Optional[int] = None
    reason: Optional[str] = None
    restarts: Optional[int] = None


@dataclass(frozen=True)
class CrashLogs:
    stdout: str = ""
    stderr: str = ""
    is_loading: bool = False

    @property
    def empty(self) -> bool:
        return not self.stdout and not self.stderr


@dataclass
class DeploymentState:
    """Everything known about one rollout, built up event by event."""

    pod_info: Optional[PodInfo] = None
    containers: Dict[str, ContainerRecord] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    is_complete: bool = False
    is_ready: bool = False
    has_crashed: bool = False
    crash_logs: Optional[CrashLogs] = None

    @property
    def pod_name(self) -> Optional[str]:
        return self.pod_info.pod_name if self.pod_info else None

    def containers_of(self, kind: ContainerKind) -> List[ContainerRecord]:
        return [c for c in self.containers.values() if c.kind == kind]

    def copy(self) -> "DeploymentState":
        return replace(self, containers=dict(self.containers), errors=list(self.errors))


@dataclass(frozen=True)
class DeploymentEvent:
    """A parsed deployment log payload.

    Only the fields relevant to `type` are set.
    """

    type: EventType
    name: Optional[str] = None
    created_at: Optional[str] = None
    pod: Optional[str] = None
    init_containers: Tuple[str, ...] = ()
    containers: Tuple[str, ...] = ()
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    exit_code: Optional[int] = None
    reason: Optional[str] = None
    restarts: Optional[int] = None
    message: Optional[str] = None

    @classmethod
    def error(cls, message: str) -> "DeploymentEvent":
        return cls(type=EventType.ERROR, message=message)


class _ShapeError(ValueError):
    pass


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise _ShapeError(f"field '{key}' must be a string")
    return value


def _required_int(payload: Dict[str, Any], key: str) -> int:
    value = payload.get(key)
    # bool is an int subclass but never a valid exit code or restart count
    if isinstance(value, bool) or not isinstance(value, int):
        raise _ShapeError(f"field '{key}' must be an integer")
    return value


def _required_str_list(payload: Dict[str, Any], key: str) -> Tuple[str, ...]:
    value = payload.get(key)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise _ShapeError(f"field '{key}' must be a list of strings")
    return tuple(value)


def _build_event(event_type: EventType, payload: Dict[str, Any]) -> DeploymentEvent:
    if event_type == EventType.POD_INFO:
        pod = payload.get("pod")
        if not isinstance(pod, str) or not pod:
            raise _ShapeError("field 'pod' must be a non-empty string")
        return DeploymentEvent(
            type=event_type,
            created_at=_optional_str(payload, "createdAt") or "",
            pod=pod,
            init_containers=_required_str_list(payload, "initContainers"),
            containers=_required_str_list(payload, "containers"),
        )

    if event_type in (EventType.INIT_CONTAINER_RUNNING, EventType.MAIN_CONTAINER_RUNNING):
        return DeploymentEvent(type=event_type, name=_optional_str(payload, "name"))

    if event_type in (EventType.INIT_CONTAINER_TERMINATED, EventType.MAIN_CONTAINER_CRASHED):
        return DeploymentEvent(
            type=event_type,
            name=_optional_str(payload, "name"),
            started_at=_optional_str(payload, "startedAt"),
            finished_at=_optional_str(payload, "finishedAt"),
            exit_code=_required_int(payload, "exitCode"),
            reason=_optional_str(payload, "reason"),
        )

    if event_type == EventType.MAIN_CONTAINER_CRASH_BACK_OFF:
        return DeploymentEvent(
            type=event_type,
            reason=_optional_str(payload, "reason"),
            restarts=_required_int(payload, "restarts"),
        )

    if event_type == EventType.ERROR:
        message = payload.get("message")
        if not isinstance(message, str):
            raise _ShapeError("field 'message' must be a string")
        return DeploymentEvent.error(message)

    return DeploymentEvent(type=event_type)


def parse_event(data: str) -> DeploymentEvent:
    """Parse one JSON payload from the log stream.

    Anything that is not a well-formed event becomes an `error` event that
    describes the problem.
    """
    try:
        payload = json.loads(data)
    except (TypeError, ValueError, RecursionError) as e:
        logger.debug(f"Undecodable deployment log payload: {data!r}")
        return DeploymentEvent.error(f"Failed to parse deployment log: {e}")

    if not isinstance(payload, dict):
        return DeploymentEvent.error("Failed to parse deployment log: payload is not an object")

    raw_type = payload.get("type")
    try:
        event_type = EventType(raw_type)
    except ValueError:
        return DeploymentEvent.error(f"Unknown log type: {raw_type}")

    try:
        return _build_event(event_type, payload)
    except _ShapeError as e:
        return DeploymentEvent.error(f"Malformed {event_type.value} log: {e}")


def _update_main_containers(state: DeploymentState, **changes: Any) -> None:
    skip_settled = changes.get("status") == ContainerStatus.RUNNING
    for name, container in state.containers.items():
        if container.kind != ContainerKind.MAIN:
            continue
        if skip_settled and container.status in SETTLED_STATUSES:
            continue
        state.containers[name] = replace(container, **changes)


def reduce(state: DeploymentState, event: DeploymentEvent) -> DeploymentState:
    """Return the state that results from applying `event` to `state`.

    `state` itself is left untouched.
    """
    new_state = state.copy()
    event_type = event.type

    if event_type == EventType.POD_INFO:
        if new_state.pod_info is not None:
            logger.debug(f"Ignoring repeated podInfo for {event.pod}")
            return new_state
        new_state.pod_info = PodInfo(
            created_at=event.created_at or "",
            pod_name=event.pod or "",
            init_container_names=event.init_containers,
            main_container_names=event.containers,
        )
        for name in event.init_containers:
            new_state.containers[name] = ContainerRecord(name=name, kind=ContainerKind.INIT)
        for name in event.containers:
            new_state.containers[name] = ContainerRecord(name=name, kind=ContainerKind.MAIN)

    elif event_type == EventType.INIT_CONTAINER_RUNNING:
        container = new_state.containers.get(event.name or "")
        if container is not None and container.status not in SETTLED_STATUSES:
            new_state.containers[container.name] = replace(container, status=ContainerStatus.RUNNING)

    elif event_type == EventType.INIT_CONTAINER_TERMINATED:
        container = new_state.containers.get(event.name or "")
        if container is not None:
            new_state.containers[container.name] = replace(
                container,
                status=ContainerStatus.COMPLETED if event.exit_code == 0 else ContainerStatus.FAILED,
                started_at=event.started_at,
                finished_at=event.finished_at,
                exit_code=event.exit_code,
                reason=event.reason,
            )

    elif event_type == EventType.MAIN_CONTAINER_RUNNING:
        _update_main_containers(new_state, status=ContainerStatus.RUNNING)

    elif event_type == EventType.MAIN_CONTAINER_READY:
        _update_main_containers(new_state, status=ContainerStatus.READY)
        new_state.is_ready = True

    elif event_type == EventType.MAIN_CONTAINER_CRASHED:
        _update_main_containers(
            new_state,
            status=ContainerStatus.FAILED,
            started_at=event.started_at,
            finished_at=event.finished_at,
            exit_code=event.exit_code,
            reason=event.reason,
        )
        new_state.has_crashed = True

    elif event_type == EventType.MAIN_CONTAINER_CRASH_BACK_OFF:
        _update_main_containers(
            new_state,
            status=ContainerStatus.CRASH_BACK_OFF,
            reason=event.reason,
            restarts=event.restarts,
        )

    elif event_type == EventType.ERROR:
        new_state.errors.append(event.message or "Unknown error")

    elif event_type == EventType.DONE:
        new_state.is_complete = True

    return new_state


def main_container(state: DeploymentState) -> Optional[ContainerRecord]:
    """The first main container, which drives the rollout outcome."""
    mains = state.containers_of(ContainerKind.MAIN)
    return mains[0] if mains else None


def crash_summary(state: DeploymentState) -> str:
    """One-line description of a main container crash."""
    container = main_container(state)
    exit_code = container.exit_code if container and container.exit_code is not None else "unknown"
    if container and container.reason:
        return f"Deployment failed - main container crashed: {container.reason} (exit code: {exit_code})"
    return f"Deployment failed - main container crashed (exit code: {exit_code})"
