from __future__ import annotations

"""Workload inventory built from the Nomad job list."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from vmonitor.foundation.config import DEFAULT_REGISTRY
from vmonitor.foundation.errors import InvalidReference, InventoryFetchError, SchedulerError

from .image import parse_image_reference
from .models import ArtifactReference, DriverType, Task, Workload

logger = logging.getLogger(__name__)

# Job statuses that no longer have running allocations.
INACTIVE_STATUSES = frozenset({"dead"})


class SchedulerClient(Protocol):
    async def list_jobs(self) -> list[dict[str, Any]]:
        ...

    async def read_job(self, job_id: str) -> dict[str, Any]:
        ...


def _none_as_empty(value: Any) -> Any:
    return [] if value is None else value


class JobStub(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(alias="ID")
    name: str = Field(alias="Name")
    namespace: Optional[str] = Field(default=None, alias="Namespace")
    status: Optional[str] = Field(default=None, alias="Status")
    stop: bool = Field(default=False, alias="Stop")


class TaskSpec(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(alias="Name")
    driver: str = Field(default="", alias="Driver")
    config: Dict[str, Any] = Field(default_factory=dict, alias="Config")

    @field_validator("config", mode="before")
    @classmethod
    def config_default(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("driver", mode="before")
    @classmethod
    def driver_default(cls, value: Any) -> Any:
        return "" if value is None else value


class TaskGroupSpec(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(alias="Name")
    tasks: list[TaskSpec] = Field(default_factory=list, alias="Tasks")

    @field_validator("tasks", mode="before")
    @classmethod
    def tasks_default(cls, value: Any) -> Any:
        return _none_as_empty(value)


class JobSpec(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(alias="ID")
    name: str = Field(alias="Name")
    namespace: Optional[str] = Field(default=None, alias="Namespace")
    task_groups: list[TaskGroupSpec] = Field(default_factory=list, alias="TaskGroups")

    @field_validator("task_groups", mode="before")
    @classmethod
    def groups_default(cls, value: Any) -> Any:
        return _none_as_empty(value)


ExtractionRule = Callable[[Mapping[str, Any]], Optional[ArtifactReference]]


@dataclass(frozen=True)
class DriverRule:
    driver_type: DriverType
    extract: ExtractionRule


def image_rule(default_registry: str = DEFAULT_REGISTRY) -> ExtractionRule:
    """Extraction rule for drivers that run ``config.image``."""

    def _extract(config: Mapping[str, Any]) -> Optional[ArtifactReference]:
        image = config.get("image")
        if not isinstance(image, str):
            raise InvalidReference("task config has no image")
        return parse_image_reference(image, default_registry=default_registry)

    return _extract


def default_rules(default_registry: str = DEFAULT_REGISTRY) -> Dict[str, DriverRule]:
    extract = image_rule(default_registry)
    return {
        "docker": DriverRule(DriverType.CONTAINER_IMAGE, extract),
        "podman": DriverRule(DriverType.CONTAINER_IMAGE, extract),
    }


class WorkloadInventory:
    """Enumerate running jobs and derive an artifact reference per task.

    The fetch is all-or-nothing: any scheduler failure or malformed job
    specification raises :class:`InventoryFetchError` and no partial
    inventory is returned. Tasks whose driver has no rule, or whose image
    cannot be parsed, are returned without a reference.
    """

    def __init__(
        self,
        scheduler: SchedulerClient,
        *,
        rules: Mapping[str, DriverRule] | None = None,
        default_registry: str = DEFAULT_REGISTRY,
    ) -> None:
        self._scheduler = scheduler
        self._rules: Dict[str, DriverRule] = (
            dict(rules) if rules is not None else default_rules(default_registry)
        )

    def register_rule(self, driver: str, rule: DriverRule) -> None:
        self._rules[driver] = rule

    async def fetch(self) -> list[Workload]:
        try:
            raw_stubs = await self._scheduler.list_jobs()
            stubs = [JobStub.model_validate(item) for item in raw_stubs]
        except SchedulerError as exc:
            raise InventoryFetchError(f"listing jobs failed: {exc}") from exc
        except ValidationError as exc:
            raise InventoryFetchError(f"malformed job list: {exc}") from exc

        workloads: list[Workload] = []
        for stub in stubs:
            if stub.stop or (stub.status or "").lower() in INACTIVE_STATUSES:
                logger.debug("Skipping inactive job %s (status=%s)", stub.id, stub.status)
                continue
            try:
                raw_job = await self._scheduler.read_job(stub.id)
                spec = JobSpec.model_validate(raw_job)
            except SchedulerError as exc:
                raise InventoryFetchError(f"reading job {stub.id!r} failed: {exc}") from exc
            except ValidationError as exc:
                raise InventoryFetchError(f"malformed job {stub.id!r}: {exc}") from exc
            workloads.append(self._build_workload(spec))
        return workloads

    def _build_workload(self, spec: JobSpec) -> Workload:
        tasks = tuple(
            self._build_task(spec.name, group.name, task)
            for group in spec.task_groups
            for task in group.tasks
        )
        return Workload(job_id=spec.id, name=spec.name, namespace=spec.namespace, tasks=tasks)

    def _build_task(self, job: str, group: str, spec: TaskSpec) -> Task:
        rule = self._rules.get(spec.driver)
        if rule is None:
            return Task(job=job, group=group, name=spec.name, driver=spec.driver)
        try:
            reference = rule.extract(spec.config)
        except InvalidReference as exc:
            logger.warning("Skipping version check for %s/%s/%s: %s", job, group, spec.name, exc)
            reference = None
        return Task(
            job=job,
            group=group,
            name=spec.name,
            driver=spec.driver,
            driver_type=rule.driver_type,
            reference=reference,
        )


__all__ = [
    "DriverRule",
    "ExtractionRule",
    "JobSpec",
    "JobStub",
    "SchedulerClient",
    "WorkloadInventory",
    "default_rules",
    "image_rule",
]
