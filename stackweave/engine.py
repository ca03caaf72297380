"""
Reconciliation engine: applies a staged plan against a provisioning backend.

Stages run strictly in order. Inside a stage, resources are reconciled
concurrently up to ``EngineConfig.concurrency`` and the engine blocks until
every one of them is terminal before moving on, so later stages only ever see
fully realized dependencies.
"""

import hashlib
import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from .backend.base import BackendState, ProvisioningBackend
from .config import EngineConfig
from .errors import (
    NotSupported, PermanentProvisioningError, StackweaveError, TransientProvisioningError,
)
from .events import EventTypes
from .graph import ResourceGraph
from .model import (
    DeletionPolicy, DeployContext, DeploymentState, Output, Resource, ResourceRecord,
    ResourceStatus, Retention,
)
from .outputs import project
from .resolver import ResolutionContext, resolve_properties
from .scheduler import Stage, plan, teardown

logger = logging.getLogger(__name__)

EventSink = Callable[[str, Dict[str, Any]], None]


class ApplyStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Action(Enum):
    CREATED = "created"
    UPDATED = "updated"
    REPLACED = "replaced"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    RETAINED = "retained"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ApplyResult:
    """Single authoritative outcome of an apply or destroy."""
    status: ApplyStatus
    failed_resource_id: Optional[str] = None
    failed_resource_type: Optional[str] = None
    cause: Optional[str] = None
    actions: Dict[str, Action] = field(default_factory=dict)
    stages_completed: int = 0
    rolled_back: List[str] = field(default_factory=list)
    outputs: Dict[str, str] = field(default_factory=dict)
    records: List[ResourceRecord] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is ApplyStatus.SUCCEEDED

    def ids_with(self, action: Action) -> List[str]:
        return sorted(rid for rid, a in self.actions.items() if a is action)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "failed_resource_id": self.failed_resource_id,
            "failed_resource_type": self.failed_resource_type,
            "cause": self.cause,
            "actions": {rid: a.value for rid, a in sorted(self.actions.items())},
            "stages_completed": self.stages_completed,
            "rolled_back": list(self.rolled_back),
            "outputs": dict(self.outputs),
            "records": [record.to_dict() for record in self.records],
        }


class _ResourceFailure(Exception):
    def __init__(self, resource: Resource, cause: str):
        self.resource = resource
        self.cause = cause
        super().__init__(cause)


class _Cancelled(Exception):
    pass


class _Deadline:
    """Per-resource time budget. Backoff delays push it out rather than eat into it."""

    def __init__(self, clock: Callable[[], float], seconds: float):
        self._clock = clock
        self.expires_at = clock() + seconds

    def extend(self, seconds: float) -> None:
        self.expires_at += seconds

    def exceeded(self, margin: float = 0.0) -> bool:
        return self._clock() + margin > self.expires_at


def fingerprint(resource_type: str, properties: Dict[str, Any]) -> str:
    """Stable sha256 over the canonical JSON of resolved properties."""
    raw = json.dumps({"type": resource_type, "properties": properties},
                     sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ReconciliationEngine:
    """Idempotent, stage-synchronous apply and teardown."""

    def __init__(self, backend: ProvisioningBackend, config: Optional[EngineConfig] = None,
                 state: Optional[DeploymentState] = None, deploy: Optional[DeployContext] = None,
                 on_event: Optional[EventSink] = None, cancel_event: Optional[threading.Event] = None,
                 sleep: Callable[[float], None] = time.sleep, clock: Callable[[], float] = time.monotonic):
        self.backend = backend
        self.config = config or EngineConfig()
        self.state = state if state is not None else DeploymentState()
        self.deploy = deploy or DeployContext()
        self._on_event = on_event
        self._cancel = cancel_event or threading.Event()
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._created_this_run: List[str] = []

    def cancel(self) -> None:
        """Stop issuing new creates; in-flight calls finish first."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def apply(self, graph: ResourceGraph, stages: Optional[List[Stage]] = None,
              outputs: Iterable[Output] = ()) -> ApplyResult:
        """
        Apply a plan.

        Args:
            graph: Validated and checked resource graph
            stages: Stages from the scheduler; computed when omitted
            outputs: Outputs to project once every stage succeeded

        Returns:
            ApplyResult with status Succeeded, Failed or Cancelled
        """
        result = self._apply(graph, plan(graph) if stages is None else stages, outputs)
        result.records = list(self.state)
        return result

    def destroy(self, graph: ResourceGraph) -> ApplyResult:
        """
        Tear everything down in reverse creation order.

        Resources with a Retain deletion policy are forgotten but left in place.
        Records left over from resources no longer declared are deleted last.
        """
        result = self._destroy(graph)
        result.records = list(self.state)
        return result

    def _apply(self, graph: ResourceGraph, stages: List[Stage], outputs: Iterable[Output]) -> ApplyResult:
        self._created_this_run = []
        result = ApplyResult(status=ApplyStatus.SUCCEEDED)
        self._emit(EventTypes.APPLY_START, {"stages": len(stages), "resources": len(graph)})

        for index, stage in enumerate(stages, start=1):
            if self.cancelled:
                return self._finish_cancelled(result)
            self._emit(EventTypes.STAGE_START, {"stage": index, "resources": list(stage)})
            failures = self._run_stage([graph.get(rid) for rid in stage], self._reconcile, result)
            if failures:
                failure = failures[0]
                result.status = ApplyStatus.FAILED
                result.failed_resource_id = failure.resource.id
                result.failed_resource_type = failure.resource.type
                result.cause = failure.cause
                result.rolled_back = self._rollback(graph)
                logger.error(f"Apply failed at {failure.resource.id} ({failure.resource.type}): {failure.cause}")
                return result
            if Action.SKIPPED in result.actions.values():
                return self._finish_cancelled(result)
            result.stages_completed = index
            self._emit(EventTypes.STAGE_DONE, {"stage": index})

        failure = self._delete_superseded()
        if failure is not None:
            result.status = ApplyStatus.FAILED
            result.failed_resource_id = failure.resource.id
            result.failed_resource_type = failure.resource.type
            result.cause = failure.cause
            logger.error(f"Apply failed deleting superseded {failure.resource.id}: {failure.cause}")
            return result
        result.outputs = project(graph, outputs, self.state, self.deploy)
        if result.outputs:
            self._emit(EventTypes.OUTPUTS, {"outputs": result.outputs})
        return result

    def _destroy(self, graph: ResourceGraph) -> ApplyResult:
        stages = teardown(graph)
        result = ApplyResult(status=ApplyStatus.SUCCEEDED)
        self._emit(EventTypes.DESTROY_START, {"stages": len(stages)})

        for index, stage in enumerate(stages, start=1):
            failures = self._run_stage([graph.get(rid) for rid in stage], self._teardown_one, result)
            if failures:
                failure = failures[0]
                result.status = ApplyStatus.FAILED
                result.failed_resource_id = failure.resource.id
                result.failed_resource_type = failure.resource.type
                result.cause = failure.cause
                return result
            result.stages_completed = index

        for record in reversed(list(self.state)):
            if record.resource_id in graph:
                continue
            orphan = Resource(record.resource_id, record.type)
            try:
                result.actions[orphan.id] = self._teardown_one(orphan)
            except _ResourceFailure as failure:
                result.status = ApplyStatus.FAILED
                result.failed_resource_id = orphan.id
                result.failed_resource_type = orphan.type
                result.cause = failure.cause
                return result

        self._emit(EventTypes.DESTROY_DONE, {"deleted": result.ids_with(Action.DELETED)})
        return result

    def _run_stage(self, resources: List[Resource], work, result: ApplyResult) -> List[_ResourceFailure]:
        failures: List[_ResourceFailure] = []
        with ThreadPoolExecutor(max_workers=self.config.concurrency) as pool:
            futures = [(resource, pool.submit(work, resource)) for resource in resources]
            for resource, future in futures:
                try:
                    result.actions[resource.id] = future.result()
                except _ResourceFailure as failure:
                    result.actions[resource.id] = Action.FAILED
                    failures.append(failure)
        return failures

    def _reconcile(self, resource: Resource) -> Action:
        if self.cancelled:
            return Action.SKIPPED
        deadline = _Deadline(self._clock, self.config.resource_timeout)
        try:
            context = ResolutionContext(state=self.state, deploy=self.deploy)
            properties = resolve_properties(resource, context)
            image = resolve_properties(resource, context, redact=True)
            digest = fingerprint(resource.type, properties)
            record = self.state.get(resource.id)

            if record and record.status is ResourceStatus.CREATED and record.fingerprint == digest:
                self._emit(EventTypes.RESOURCE_UNCHANGED, {"resource_id": resource.id})
                return Action.UNCHANGED

            if record and record.status is ResourceStatus.CREATED and record.physical_id:
                try:
                    return self._update(resource, record, properties, image, digest, deadline)
                except NotSupported:
                    logger.info(f"{resource.type} cannot be updated in place, replacing {resource.id}")
                    old_physical_id = record.physical_id
                    record.supersede(old_physical_id)
                    self._create(resource, properties, image, digest, deadline)
                    self._emit(EventTypes.RESOURCE_REPLACED, {
                        "resource_id": resource.id, "old_physical_id": old_physical_id,
                        "physical_id": self.state.get(resource.id).physical_id,
                    })
                    return Action.REPLACED

            if record and record.physical_id and record.status is not ResourceStatus.DELETED:
                # Leftover from a failed earlier apply: build a fresh one, drop the old one afterwards
                record.supersede(record.physical_id)
            self._create(resource, properties, image, digest, deadline)
            return Action.CREATED
        except _Cancelled:
            return Action.SKIPPED
        except StackweaveError as e:
            self._mark_failed(resource, str(e))
            raise _ResourceFailure(resource, str(e)) from e

    def _create(self, resource, properties, image, digest, deadline) -> None:
        self._emit(EventTypes.RESOURCE_CREATE_START, {
            "resource_id": resource.id, "type": resource.type, "properties": image,
        })
        physical_id, attributes = self._with_retries(
            resource, deadline, lambda: self.backend.create(resource.type, properties), cancellable=True
        )
        previous = self.state.get(resource.id)
        record = ResourceRecord(
            resource_id=resource.id, type=resource.type, physical_id=physical_id,
            fingerprint=digest, attributes=dict(attributes), status=ResourceStatus.CREATING,
            superseded=list(previous.superseded) if previous else [],
        )
        with self._lock:
            self.state.put(record)
            self._created_this_run.append(resource.id)
        self._wait_ready(resource, record, deadline)
        logger.info(f"Created {resource.id} ({resource.type}) as {physical_id}")
        self._emit(EventTypes.RESOURCE_CREATED, {
            "resource_id": resource.id, "type": resource.type, "physical_id": physical_id,
        })

    def _update(self, resource, record, properties, image, digest, deadline) -> Action:
        self._emit(EventTypes.RESOURCE_UPDATE_START, {
            "resource_id": resource.id, "physical_id": record.physical_id, "properties": image,
        })
        self._with_retries(
            resource, deadline,
            lambda: self.backend.update(resource.type, record.physical_id, properties),
        )
        record.status = ResourceStatus.CREATING
        record.fingerprint = digest
        self._wait_ready(resource, record, deadline)
        logger.info(f"Updated {resource.id} ({resource.type}) in place")
        return Action.UPDATED

    def _wait_ready(self, resource: Resource, record: ResourceRecord, deadline: _Deadline) -> None:
        while True:
            backend_state, attributes = self._with_retries(
                resource, deadline, lambda: self.backend.describe(resource.type, record.physical_id)
            )
            if backend_state is BackendState.READY:
                record.attributes = dict(attributes)
                record.status = ResourceStatus.CREATED
                record.error = None
                return
            if backend_state is BackendState.FAILED:
                detail = attributes.get("StatusMessage") or "no detail"
                raise PermanentProvisioningError(f"backend reported {resource.id} as failed: {detail}")
            if deadline.exceeded(self.config.poll_interval):
                raise PermanentProvisioningError(
                    f"timed out after {self.config.resource_timeout:.0f}s waiting for {resource.id}"
                )
            self._sleep(self.config.poll_interval)

    def _with_retries(self, resource: Resource, deadline: _Deadline, operation, cancellable: bool = False):
        attempt = 1
        while True:
            try:
                return operation()
            except TransientProvisioningError as e:
                if attempt >= self.config.max_attempts:
                    raise PermanentProvisioningError(
                        f"retry budget exhausted after {attempt} attempts: {e}"
                    ) from e
                if deadline.exceeded():
                    raise PermanentProvisioningError(
                        f"timed out after {self.config.resource_timeout:.0f}s retrying {resource.id}: {e}"
                    ) from e
                delay = self.config.backoff_delay(attempt)
                deadline.extend(delay)
                self._emit(EventTypes.RESOURCE_RETRY, {
                    "resource_id": resource.id, "attempt": attempt, "delay": delay, "cause": str(e),
                })
                logger.warning(f"Transient error on {resource.id}, retry {attempt} in {delay:.1f}s: {e}")
                self._sleep(delay)
                if cancellable and self.cancelled:
                    raise _Cancelled()
                attempt += 1

    def _mark_failed(self, resource: Resource, cause: str) -> None:
        with self._lock:
            record = self.state.get(resource.id)
            if record is None:
                record = ResourceRecord(resource_id=resource.id, type=resource.type)
            record.status = ResourceStatus.FAILED
            record.error = cause
            self.state.put(record)
        self._emit(EventTypes.RESOURCE_FAILED, {
            "resource_id": resource.id, "type": resource.type, "cause": cause,
        })

    def _rollback(self, graph: ResourceGraph) -> List[str]:
        """Delete Ephemeral resources created during this apply, newest first."""
        rolled_back = []
        for resource_id in reversed(self._created_this_run):
            resource = graph.get(resource_id)
            if resource.retention is not Retention.EPHEMERAL:
                continue
            record = self.state.get(resource_id)
            physical_id = record.physical_id
            try:
                self._with_retries(
                    resource, _Deadline(self._clock, self.config.resource_timeout),
                    lambda: self.backend.delete(resource.type, physical_id),
                )
            except StackweaveError as e:
                logger.error(f"Rollback of {resource_id} failed, leaving it in place: {e}")
                continue
            if record.superseded:
                # Keep the record so its pending deletions stay tracked
                record.physical_id = None
                record.fingerprint = None
                record.attributes = {}
                record.status = ResourceStatus.PENDING
            else:
                self.state.remove(resource_id)
            rolled_back.append(resource_id)
            self._emit(EventTypes.ROLLBACK, {"resource_id": resource_id, "physical_id": physical_id})
        return rolled_back

    def _delete_superseded(self) -> Optional[_ResourceFailure]:
        """
        Delete resources that were replaced, once every dependent has been rewired.

        Pending deletions live on the records, so ones left behind by a failed
        or cancelled apply are picked up here by the next successful one.

        Returns:
            The first deletion failure, or None when nothing is left pending
        """
        for record in reversed(list(self.state)):
            try:
                self._drain_superseded(record)
            except _ResourceFailure as failure:
                return failure
        return None

    def _drain_superseded(self, record: ResourceRecord) -> int:
        resource = Resource(record.resource_id, record.type)
        drained = 0
        for physical_id in list(record.superseded):
            if physical_id != record.physical_id:
                try:
                    self._with_retries(
                        resource, _Deadline(self._clock, self.config.resource_timeout),
                        lambda: self.backend.delete(record.type, physical_id),
                    )
                except StackweaveError as e:
                    cause = f"could not delete superseded {physical_id}: {e}"
                    self._emit(EventTypes.RESOURCE_FAILED, {
                        "resource_id": record.resource_id, "type": record.type, "cause": cause,
                    })
                    raise _ResourceFailure(resource, cause) from e
                logger.info(f"Deleted superseded {record.resource_id} ({record.type}) {physical_id}")
                self._emit(EventTypes.RESOURCE_DELETED, {
                    "resource_id": record.resource_id, "physical_id": physical_id, "reason": "replaced",
                })
                drained += 1
            record.superseded.remove(physical_id)
        return drained

    def _teardown_one(self, resource: Resource) -> Action:
        record = self.state.get(resource.id)
        drained = self._drain_superseded(record) if record is not None else 0
        if record is None or record.physical_id is None or record.status is ResourceStatus.DELETED:
            self.state.remove(resource.id)
            return Action.DELETED if drained else Action.UNCHANGED
        if resource.deletion_policy is DeletionPolicy.RETAIN:
            self.state.remove(resource.id)
            self._emit(EventTypes.RESOURCE_RETAINED, {
                "resource_id": resource.id, "physical_id": record.physical_id,
            })
            return Action.RETAINED
        deadline = _Deadline(self._clock, self.config.resource_timeout)
        try:
            self._with_retries(resource, deadline,
                               lambda: self.backend.delete(resource.type, record.physical_id))
        except StackweaveError as e:
            self._emit(EventTypes.RESOURCE_FAILED, {
                "resource_id": resource.id, "type": resource.type, "cause": str(e),
            })
            raise _ResourceFailure(resource, str(e)) from e
        with self._lock:
            self.state.remove(resource.id)
        logger.info(f"Deleted {resource.id} ({resource.type}) {record.physical_id}")
        self._emit(EventTypes.RESOURCE_DELETED, {
            "resource_id": resource.id, "physical_id": record.physical_id,
        })
        return Action.DELETED

    def _finish_cancelled(self, result: ApplyResult) -> ApplyResult:
        result.status = ApplyStatus.CANCELLED
        result.cause = "apply cancelled"
        self._emit(EventTypes.CANCELLED, {"stages_completed": result.stages_completed})
        return result

    def _emit(self, event_type: str, data: Dict[str, Any]) -> None:
        if self._on_event is not None:
            self._on_event(event_type, data)
