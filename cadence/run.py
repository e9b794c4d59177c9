from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List

import yaml

from .build import BuildPipeline, PipelineContext, Stage, image_problems, render_dockerfile
from .catalog import Catalog
from .errors import CadenceError, InvocationError, ScheduleError
from .invoker import ScheduledInvoker
from .log import configure_logging
from .schedule import describe, fire_times, parse_cron
from .service import SchedulerService
from .settings import Settings
from .workflow import load_workflow


def _settings(args: argparse.Namespace) -> Settings:
    return Settings.from_env().override(
        catalog=Path(args.catalog) if args.catalog else None,
        workspace=Path(args.workspace) if args.workspace else None,
        log_level=args.log_level,
        log_file=Path(args.log_file) if args.log_file else None,
        repository_owner=args.repository_owner,
    )


def _catalog(args: argparse.Namespace) -> Catalog:
    catalog = Catalog.from_file(args.settings.catalog)
    for workflow in getattr(args, "workflow", None) or []:
        catalog.add_jobs(load_workflow(workflow))
    return catalog


def _invoker(args: argparse.Namespace, catalog: Catalog) -> ScheduledInvoker:
    return ScheduledInvoker(catalog.jobs, repository_owner=args.settings.repository_owner)


def _parse_build_args(pairs: List[str]) -> Dict[str, str]:
    build_args: Dict[str, str] = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise CadenceError(f"Build arg must look like NAME=VALUE, got {pair!r}")
        build_args[name] = value
    return build_args


def _pipeline(args: argparse.Namespace) -> BuildPipeline:
    image = _catalog(args).get_image(args.image_id)
    context = PipelineContext(
        image=image,
        workspace=args.settings.workspace,
        build_context=Path(args.context or image.context),
        build_args=_parse_build_args(args.build_arg),
        docker=args.settings.docker,
    )
    return BuildPipeline(context)


def cmd_list(args: argparse.Namespace) -> int:
    catalog = _catalog(args)
    for job in catalog.iter_jobs():
        manual = "manual" if job.triggers.manual_dispatch else "-"
        print(f"job\t{job.id}\t{','.join(job.triggers.cron) or '-'}\t{manual}")
    for image in catalog.iter_images():
        print(f"image\t{image.id}\t{image.tag}\t{'->'.join(stage.name for stage in image.stages)}")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    catalog = _catalog(args)
    problems: Dict[str, List[str]] = {}
    for job in catalog.iter_jobs():
        for expr in job.triggers.cron:
            try:
                parse_cron(expr, args.settings.timezone)
            except ScheduleError as exc:
                problems.setdefault(f"job:{job.id}", []).append(str(exc))
        missing = [flag for flag in job.required_args if flag not in job.args]
        if missing:
            problems.setdefault(f"job:{job.id}", []).append(f"required arguments not declared: {', '.join(missing)}")
    for image in catalog.iter_images():
        found = image_problems(image)
        if found:
            problems[f"image:{image.id}"] = found
    print(json.dumps({"valid": not problems, "problems": problems}, indent=2))
    return 1 if problems else 0


def cmd_next(args: argparse.Namespace) -> int:
    job = _catalog(args).get_job(args.job_id)
    tz = args.settings.timezone
    now = datetime.now(timezone.utc)
    for expr in job.triggers.cron:
        print(describe(expr, tz))
        for moment in fire_times(expr, now, args.count, tz):
            print(f"  {moment.isoformat()}")
    return 0


def cmd_invoke(args: argparse.Namespace) -> int:
    catalog = _catalog(args)
    service = SchedulerService(_invoker(args, catalog), catalog.iter_jobs(), tz=args.settings.timezone)
    result = service.dispatch(args.job_id)
    if result is not None:
        print(json.dumps(result.to_dict(), indent=2))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    catalog = _catalog(args)
    service = SchedulerService(_invoker(args, catalog), catalog.iter_jobs(), tz=args.settings.timezone)
    service.start()
    return 0


def cmd_import_workflow(args: argparse.Namespace) -> int:
    jobs = [dataclasses.asdict(job) for job in load_workflow(args.path)]
    print(yaml.safe_dump({"jobs": jobs}, sort_keys=False), end="")
    return 0


def cmd_render(args: argparse.Namespace) -> int:
    print(render_dockerfile(_catalog(args).get_image(args.image_id)), end="")
    return 0


def cmd_build(args: argparse.Namespace) -> int:
    pipeline = _pipeline(args)
    result = pipeline.run_until(Stage[args.until.upper()], force=args.force)
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.status == "completed" else 1


def cmd_status(args: argparse.Namespace) -> int:
    print(json.dumps(_pipeline(args).status(), indent=2))
    return 0


def _add_image_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--image-id", required=True)
    parser.add_argument(
        "--build-arg",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Override a declared build argument (repeatable).",
    )
    parser.add_argument("--context", default=None, help="Build context directory.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scheduled job invoker and container build pipeline")
    parser.add_argument("--catalog", default=None, help="Path to the catalog file (CADENCE_CATALOG).")
    parser.add_argument("--workspace", default=None, help="Directory for build state and artifacts.")
    parser.add_argument("--log-level", default=None, help="Logging level (CADENCE_LOG_LEVEL).")
    parser.add_argument("--log-file", default=None, help="Also log to this rotating file.")
    parser.add_argument(
        "--repository-owner",
        default=None,
        help="Owner matched against job owner guards (CADENCE_REPOSITORY_OWNER).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List jobs and images in the catalog")
    list_parser.add_argument("--workflow", action="append", default=[], help="Also load jobs from a workflow file.")
    list_parser.set_defaults(func=cmd_list)

    validate_parser = subparsers.add_parser("validate", help="Check cron expressions and image recipes")
    validate_parser.add_argument("--workflow", action="append", default=[])
    validate_parser.set_defaults(func=cmd_validate)

    next_parser = subparsers.add_parser("next", help="Show upcoming fire times for a job")
    next_parser.add_argument("--job-id", required=True)
    next_parser.add_argument("--count", type=int, default=5)
    next_parser.add_argument("--workflow", action="append", default=[])
    next_parser.set_defaults(func=cmd_next)

    invoke_parser = subparsers.add_parser("invoke", help="Dispatch a job once, now")
    invoke_parser.add_argument("--job-id", required=True)
    invoke_parser.add_argument("--workflow", action="append", default=[])
    invoke_parser.set_defaults(func=cmd_invoke)

    serve_parser = subparsers.add_parser("serve", help="Run jobs on their cron schedules")
    serve_parser.add_argument("--workflow", action="append", default=[])
    serve_parser.set_defaults(func=cmd_serve)

    import_parser = subparsers.add_parser("import-workflow", help="Print catalog jobs for a workflow file")
    import_parser.add_argument("path")
    import_parser.set_defaults(func=cmd_import_workflow)

    render_parser = subparsers.add_parser("render", help="Print the Dockerfile for an image")
    render_parser.add_argument("--image-id", required=True)
    render_parser.set_defaults(func=cmd_render)

    build_parser_ = subparsers.add_parser("build", help="Run the image pipeline")
    _add_image_arguments(build_parser_)
    build_parser_.add_argument(
        "--until",
        default=Stage.INSPECT.name.lower(),
        choices=[stage.name.lower() for stage in Stage.ordered()],
    )
    build_parser_.add_argument("--force", action="store_true", help="Discard cached stage results.")
    build_parser_.set_defaults(func=cmd_build)

    status_parser = subparsers.add_parser("status", help="Show pipeline status for an image")
    _add_image_arguments(status_parser)
    status_parser.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.settings = _settings(args)
    configure_logging(args.settings.log_level, args.settings.log_file)
    try:
        return args.func(args)
    except InvocationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.returncode or 1
    except CadenceError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
