from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

TRIGGER_SCHEDULE = "schedule"
TRIGGER_MANUAL = "manual"

COPY_FILE = "file"
COPY_DIRECTORY = "directory"


def _str_mapping(data: Optional[Dict[str, Any]]) -> Dict[str, str]:
    return {str(key): str(value) for key, value in (data or {}).items()}


@dataclass
class TriggerSpec:
    """When a job fires: cron expressions and/or manual dispatch."""

    cron: List[str] = field(default_factory=list)
    manual_dispatch: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriggerSpec":
        cron = data.get("cron", [])
        if isinstance(cron, str):
            cron = [cron]
        return cls(
            cron=[str(expr) for expr in cron],
            manual_dispatch=bool(data.get("manual_dispatch", True)),
        )


@dataclass
class JobSpec:
    """An external command fired by the scheduled invoker."""

    id: str
    command: List[str]
    args: Dict[str, str] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    triggers: TriggerSpec = field(default_factory=TriggerSpec)
    required_args: List[str] = field(default_factory=list)
    owner_guard: Optional[str] = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobSpec":
        command = data["command"]
        if isinstance(command, str):
            command = command.split()
        args = _str_mapping(data.get("args"))
        return cls(
            id=data["id"],
            command=[str(part) for part in command],
            args=args,
            env=_str_mapping(data.get("env")),
            cwd=data.get("cwd"),
            triggers=TriggerSpec.from_dict(data.get("triggers", {})),
            required_args=list(data.get("required_args", list(args))),
            owner_guard=data.get("owner_guard"),
            description=data.get("description", ""),
        )


@dataclass
class CopySpec:
    """A file or directory copied into a stage, optionally from an earlier stage."""

    source: str
    target: str
    from_stage: Optional[str] = None
    kind: str = COPY_FILE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CopySpec":
        return cls(
            source=data["source"],
            target=data["target"],
            from_stage=data.get("from_stage"),
            kind=data.get("kind", COPY_FILE),
        )


@dataclass
class RunStep:
    command: str
    cache: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "RunStep":
        if isinstance(data, str):
            return cls(command=data)
        return cls(command=data["command"], cache=list(data.get("cache", [])))


@dataclass
class StageSpec:
    """One isolated build stage of a multi-stage image."""

    name: str
    base_image: str
    workdir: Optional[str] = None
    packages: List[str] = field(default_factory=list)
    build_args: Dict[str, Optional[str]] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    copies: List[CopySpec] = field(default_factory=list)
    replace_files: List[CopySpec] = field(default_factory=list)
    run: List[RunStep] = field(default_factory=list)
    entrypoint: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StageSpec":
        build_args = {
            str(name): (None if value is None else str(value))
            for name, value in (data.get("build_args") or {}).items()
        }
        entrypoint = data.get("entrypoint")
        if isinstance(entrypoint, str):
            entrypoint = [entrypoint]
        return cls(
            name=data["name"],
            base_image=data["base_image"],
            workdir=data.get("workdir"),
            packages=list(data.get("packages", [])),
            build_args=build_args,
            env=_str_mapping(data.get("env")),
            copies=[CopySpec.from_dict(entry) for entry in data.get("copies", [])],
            replace_files=[CopySpec.from_dict(entry) for entry in data.get("replace_files", [])],
            run=[RunStep.from_dict(entry) for entry in data.get("run", [])],
            entrypoint=list(entrypoint) if entrypoint else None,
        )


@dataclass
class ImageSpec:
    """A container image produced by a linear sequence of stages."""

    id: str
    tag: str
    stages: List[StageSpec]
    context: str = "."
    informational_args: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageSpec":
        return cls(
            id=data["id"],
            tag=data.get("tag", f"{data['id']}:latest"),
            stages=[StageSpec.from_dict(entry) for entry in data.get("stages", [])],
            context=data.get("context", "."),
            informational_args=list(data.get("informational_args", [])),
        )

    @property
    def final_stage(self) -> StageSpec:
        return self.stages[-1]

    def declared_build_args(self) -> Dict[str, Optional[str]]:
        declared: Dict[str, Optional[str]] = {}
        for stage in self.stages:
            declared.update(stage.build_args)
        return declared


@dataclass
class StageResult:
    """Summary emitted by a pipeline stage."""

    name: str
    status: str
    details: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"stage": self.name, "status": self.status, "details": self.details}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StageResult":
        return cls(
            name=data.get("stage", ""),
            status=data.get("status", "unknown"),
            details=data.get("details", {}),
        )


@dataclass
class InvocationResult:
    """Record of one invocation of a job. The command is stored masked."""

    job_id: str
    trigger: str
    command: List[str]
    returncode: int
    started_at: str
    finished_at: str

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "trigger": self.trigger,
            "command": self.command,
            "returncode": self.returncode,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
