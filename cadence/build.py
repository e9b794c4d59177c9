from __future__ import annotations

import json
import logging
import re
import shutil
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from .errors import BuildError, CadenceError
from .models import COPY_DIRECTORY, COPY_FILE, ImageSpec, StageResult, StageSpec
from .utils import dump_json, ensure_directory, run_command, sha256_file, sha256_text

logger = logging.getLogger(__name__)

BUILD_ARG_REFERENCE = re.compile(r"\$\{?([A-Za-z_][A-Za-z0-9_]*)")


class Stage(Enum):
    VALIDATE = auto()
    RENDER = auto()
    BUILD = auto()
    INSPECT = auto()

    @classmethod
    def ordered(cls) -> Iterable["Stage"]:
        return (cls.VALIDATE, cls.RENDER, cls.BUILD, cls.INSPECT)


def _render_copy(source: str, target: str, from_stage: Optional[str]) -> str:
    prefix = f"--from={from_stage} " if from_stage else ""
    return f"COPY {prefix}{source} {target}"


def _render_stage(stage: StageSpec) -> List[str]:
    lines = [f"FROM {stage.base_image} AS {stage.name}"]
    if stage.workdir:
        lines.append(f"WORKDIR {stage.workdir}")
    for name, default in stage.build_args.items():
        lines.append(f"ARG {name}" if default is None else f"ARG {name}={default}")
    if stage.packages:
        lines.append(
            "RUN apt-get update \\\n"
            f"    && apt-get install -y --no-install-recommends {' '.join(stage.packages)} \\\n"
            "    && rm -rf /var/lib/apt/lists/*"
        )
    for copy in stage.copies:
        lines.append(_render_copy(copy.source, copy.target, copy.from_stage))
    for replacement in stage.replace_files:
        lines.append(_render_copy(replacement.source, replacement.target, replacement.from_stage))
    for name, value in stage.env.items():
        lines.append(f"ENV {name}={value}")
    for step in stage.run:
        mounts = "".join(f"--mount=type=cache,target={target} \\\n    " for target in step.cache)
        lines.append(f"RUN {mounts}{step.command}")
    if stage.entrypoint:
        lines.append(f"ENTRYPOINT {json.dumps(stage.entrypoint)}")
    return lines


def render_dockerfile(image: ImageSpec) -> str:
    """Render the multi-stage Dockerfile for ``image``."""

    blocks = ["# syntax=docker/dockerfile:1"]
    for stage in image.stages:
        blocks.append("\n".join(_render_stage(stage)))
    return "\n\n".join(blocks) + "\n"


def _referenced_args(value: str) -> List[str]:
    return BUILD_ARG_REFERENCE.findall(value)


def image_problems(image: ImageSpec) -> List[str]:
    problems: List[str] = []
    if not image.stages:
        return ["image declares no stages"]

    seen: List[str] = []
    for stage in image.stages:
        if stage.name in seen:
            problems.append(f"duplicate stage name {stage.name!r}")
        for copy in stage.copies + stage.replace_files:
            if copy.kind not in (COPY_FILE, COPY_DIRECTORY):
                problems.append(f"{stage.name}: copy {copy.source!r} has unknown kind {copy.kind!r}")
            if copy.from_stage and copy.from_stage not in seen:
                problems.append(
                    f"{stage.name}: copy {copy.source!r} references {copy.from_stage!r}, "
                    "which is not an earlier stage"
                )
        for name, value in stage.env.items():
            for arg in _referenced_args(value):
                if arg not in stage.build_args:
                    problems.append(f"{stage.name}: ENV {name} references undeclared build arg {arg!r}")
        seen.append(stage.name)

    with_entrypoint = [stage.name for stage in image.stages if stage.entrypoint]
    if len(with_entrypoint) != 1:
        problems.append(f"expected exactly one entrypoint, found {len(with_entrypoint)}")
    elif with_entrypoint[0] != image.final_stage.name:
        problems.append(f"entrypoint is declared on {with_entrypoint[0]!r}, not the final stage")

    layout = runtime_layout(image)
    entrypoint = layout["entrypoint"]
    if entrypoint and entrypoint[0] not in layout["files"]:
        problems.append(f"entrypoint {entrypoint[0]!r} is not a file copied into the final stage")
    for name, value in layout["env"].items():
        if value.startswith("/") and value not in layout["directories"] and value not in layout["files"]:
            problems.append(f"ENV {name}={value} does not point at a path copied into the final stage")

    declared = image.declared_build_args()
    for name in image.informational_args:
        if name not in declared:
            problems.append(f"informational build arg {name!r} is not declared by any stage")
    return problems


def validate_image(image: ImageSpec) -> None:
    problems = image_problems(image)
    if problems:
        raise BuildError(image.id, problems)


def runtime_layout(image: ImageSpec) -> Dict[str, object]:
    """What the final stage puts in the image: entrypoint, copied paths and env."""

    final = image.final_stage
    copies = final.copies + final.replace_files
    return {
        "stage": final.name,
        "base_image": final.base_image,
        "workdir": final.workdir,
        "entrypoint": list(final.entrypoint or []),
        "files": sorted(copy.target for copy in copies if copy.kind == COPY_FILE),
        "directories": sorted(copy.target for copy in copies if copy.kind == COPY_DIRECTORY),
        "env": dict(final.env),
    }


def resolve_build_args(image: ImageSpec, overrides: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Declared defaults overlaid with ``overrides``; arguments without a value are dropped."""

    declared = image.declared_build_args()
    unknown = sorted(set(overrides or {}) - set(declared))
    if unknown:
        raise BuildError(image.id, [f"build arg {name!r} is not declared" for name in unknown])
    resolved = {name: value for name, value in declared.items() if value is not None}
    resolved.update(overrides or {})
    return resolved


def content_digest(image: ImageSpec, build_args: Optional[Mapping[str, str]] = None) -> str:
    """Digest of everything that determines the image content; informational args are left out."""

    args = resolve_build_args(image, build_args)
    significant = {name: value for name, value in args.items() if name not in image.informational_args}
    payload = json.dumps({"dockerfile": render_dockerfile(image), "build_args": significant}, sort_keys=True)
    return sha256_text(payload)


@dataclass
class PipelineContext:
    image: ImageSpec
    workspace: Path
    build_context: Path = Path(".")
    build_args: Dict[str, str] = field(default_factory=dict)
    docker: str = "docker"

    def __post_init__(self) -> None:
        self.workspace = Path(self.workspace)
        self.build_context = Path(self.build_context)
        ensure_directory(self.workspace)

    @property
    def digest(self) -> str:
        return content_digest(self.image, self.build_args)

    @property
    def state_key(self) -> str:
        # every resolved arg, informational ones included, so a new commit id rebuilds
        args = resolve_build_args(self.image, self.build_args)
        return sha256_text(json.dumps({"digest": self.digest, "build_args": args}, sort_keys=True))

    @property
    def state_dir(self) -> Path:
        return ensure_directory(self.workspace / "state" / self.image.id / self.state_key[:16])

    @property
    def artifacts_dir(self) -> Path:
        return ensure_directory(self.workspace / "artifacts" / self.image.id)

    @property
    def logs_dir(self) -> Path:
        return ensure_directory(self.workspace / "logs" / self.image.id)

    def stage_output(self, stage: Stage) -> Path:
        return self.state_dir / f"{stage.name.lower()}.json"

    def artifact_path(self, relative: str) -> Path:
        return self.artifacts_dir / relative

    def load_stage(self, stage: Stage) -> Dict[str, object]:
        path = self.stage_output(stage)
        if not path.exists():
            raise CadenceError(f"{stage.name.title()} stage must be executed first.")
        return json.loads(path.read_text())["details"]

    def clear_state(self) -> None:
        state_root = self.workspace / "state" / self.image.id
        if state_root.exists():
            shutil.rmtree(state_root)


StageHandler = Callable[[PipelineContext], StageResult]


def _stage_validate(context: PipelineContext) -> StageResult:
    problems = image_problems(context.image)
    if problems:
        return StageResult("validate", "failed", {"problems": problems})
    return StageResult(
        "validate",
        "completed",
        {"stages": [stage.name for stage in context.image.stages], "layout": runtime_layout(context.image)},
    )


def _stage_render(context: PipelineContext) -> StageResult:
    dockerfile_path = context.artifact_path("Dockerfile")
    dockerfile_path.write_text(render_dockerfile(context.image))
    details = {
        "dockerfile": str(dockerfile_path),
        "dockerfile_sha256": sha256_file(dockerfile_path),
        "content_digest": context.digest,
        "build_args": resolve_build_args(context.image, context.build_args),
    }
    return StageResult("render", "completed", details)


def build_command(context: PipelineContext, dockerfile: str) -> List[str]:
    command = [context.docker, "build", "--file", dockerfile, "--tag", context.image.tag]
    for name, value in sorted(resolve_build_args(context.image, context.build_args).items()):
        command.extend(["--build-arg", f"{name}={value}"])
    command.append(str(context.build_context))
    return command


def _stage_build(context: PipelineContext) -> StageResult:
    render_data = context.load_stage(Stage.RENDER)
    command = build_command(context, str(render_data["dockerfile"]))
    log_path = context.logs_dir / "build.log"

    logger.info("Building %s: %s", context.image.tag, " ".join(command))
    build_start = time.perf_counter()
    try:
        result = run_command(command, env={"DOCKER_BUILDKIT": "1"})
    except OSError as exc:
        logger.error("Cannot run %s: %s", context.docker, exc)
        return StageResult("build", "failed", {"command": command, "message": f"Cannot run {context.docker}: {exc}"})
    duration = round(time.perf_counter() - build_start, 3)
    log_path.write_text(result.stdout + result.stderr)

    details: Dict[str, object] = {
        "command": command,
        "tag": context.image.tag,
        "returncode": result.returncode,
        "duration_s": duration,
        "log": str(log_path),
    }
    if result.returncode != 0:
        logger.error("Build of %s failed with code %s, see %s", context.image.tag, result.returncode, log_path)
        details["message"] = "docker build failed."
        return StageResult("build", "failed", details)
    return StageResult("build", "completed", details)


def _stage_inspect(context: PipelineContext) -> StageResult:
    context.load_stage(Stage.BUILD)
    command = [context.docker, "image", "inspect", "--format", "{{json .Config}}", context.image.tag]
    try:
        result = run_command(command)
    except OSError as exc:
        return StageResult("inspect", "failed", {"message": f"Cannot run {context.docker}: {exc}"})
    if result.returncode != 0:
        return StageResult("inspect", "failed", {"message": result.stderr.strip()})

    config = json.loads(result.stdout or "{}")
    env = dict(entry.split("=", 1) for entry in config.get("Env") or [] if "=" in entry)
    expected = runtime_layout(context.image)
    mismatches: List[str] = []
    if (config.get("Entrypoint") or []) != expected["entrypoint"]:
        mismatches.append(f"entrypoint is {config.get('Entrypoint')!r}, expected {expected['entrypoint']!r}")
    for name, value in expected["env"].items():  # type: ignore[union-attr]
        if env.get(name) != value:
            mismatches.append(f"ENV {name} is {env.get(name)!r}, expected {value!r}")

    details = {"entrypoint": config.get("Entrypoint"), "env": env, "mismatches": mismatches}
    return StageResult("inspect", "failed" if mismatches else "completed", details)


_STAGE_HANDLERS: Dict[Stage, StageHandler] = {
    Stage.VALIDATE: _stage_validate,
    Stage.RENDER: _stage_render,
    Stage.BUILD: _stage_build,
    Stage.INSPECT: _stage_inspect,
}


class BuildPipeline:
    """Runs the image stages in order, caching each completed result on disk."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context

    def run_until(self, target_stage: Stage = Stage.INSPECT, *, force: bool = False) -> StageResult:
        if force:
            self.context.clear_state()
        last_result: Optional[StageResult] = None
        for stage in Stage.ordered():
            last_result = self.run_stage(stage)
            if last_result.status != "completed" or stage is target_stage:
                break
        assert last_result is not None
        return last_result

    def run_stage(self, stage: Stage) -> StageResult:
        stage_output = self.context.stage_output(stage)
        if stage_output.exists():
            cached = StageResult.from_dict(json.loads(stage_output.read_text()))
            if cached.status == "completed":
                return cached
        handler = _STAGE_HANDLERS[stage]
        result = handler(self.context)
        dump_json(stage_output, result.to_dict())
        logger.info("Stage %s of %s: %s", stage.name.lower(), self.context.image.id, result.status)
        return result

    def status(self) -> Dict[str, str]:
        statuses: Dict[str, str] = {}
        for stage in Stage.ordered():
            stage_output = self.context.stage_output(stage)
            if stage_output.exists():
                data = json.loads(stage_output.read_text())
                statuses[stage.name.lower()] = data.get("status", "unknown")
        return statuses
