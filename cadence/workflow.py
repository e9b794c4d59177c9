"""Import scheduled jobs from a GitHub Actions workflow file.

Only the parts the scheduled invoker needs are read: ``on.schedule`` cron
entries, ``on.workflow_dispatch``, a ``github.repository_owner`` job
condition and the last ``run`` step of each job.
"""

from __future__ import annotations

import re
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .catalog import load_document
from .errors import CatalogError
from .models import JobSpec, TriggerSpec

EXPRESSION = re.compile(r"\$\{\{\s*(.*?)\s*\}\}")
OWNER_CONDITION = re.compile(r"github\.repository_owner\s*==\s*'([^']+)'")
SHELL_SYNTAX = re.compile(r"&&|\|\||[|;<>`]")


def _triggers(document: Dict[Any, Any]) -> TriggerSpec:
    # YAML 1.1 reads the bare key `on` as boolean True
    raw = document.get("on", document.get(True))
    if raw is None:
        raise CatalogError("Workflow has no 'on' section")
    if isinstance(raw, str):
        raw = {raw: None}
    elif isinstance(raw, list):
        raw = {name: None for name in raw}
    cron = [str(entry["cron"]) for entry in raw.get("schedule") or [] if "cron" in entry]
    return TriggerSpec(cron=cron, manual_dispatch="workflow_dispatch" in raw)


def split_command(run: str) -> Tuple[List[str], Dict[str, str]]:
    """Split a shell command into its base argv and its trailing ``--flag value`` pairs."""

    if "\n" in run.strip() or SHELL_SYNTAX.search(EXPRESSION.sub("", run)):
        raise CatalogError(f"Only a single command without shell operators can be imported: {run!r}")
    compact = EXPRESSION.sub(lambda match: "${{" + match.group(1) + "}}", run.strip())
    tokens = shlex.split(compact)
    command: List[str] = []
    args: Dict[str, str] = {}
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if token.startswith("--") and "=" in token:
            flag, value = token.split("=", 1)
            args[flag] = value
            index += 1
            continue
        has_value = index + 1 < len(tokens) and not tokens[index + 1].startswith("--")
        if token.startswith("--") and has_value:
            args[token] = tokens[index + 1]
            index += 2
            continue
        # options followed by a positional belong to the base command
        for flag, value in args.items():
            command.extend([flag, value])
        args.clear()
        command.append(token)
        index += 1
    if not command:
        raise CatalogError(f"Empty command: {run!r}")
    return command, args


def _owner_guard(condition: Optional[str]) -> Optional[str]:
    if not condition:
        return None
    match = OWNER_CONDITION.search(str(condition))
    return match.group(1) if match else None


def jobs_from_workflow(document: Dict[Any, Any]) -> List[JobSpec]:
    triggers = _triggers(document)
    jobs: List[JobSpec] = []
    for job_id, job in (document.get("jobs") or {}).items():
        run_steps = [step for step in job.get("steps", []) if "run" in step]
        if not run_steps:
            continue
        step = run_steps[-1]
        command, args = split_command(str(step["run"]))
        jobs.append(
            JobSpec(
                id=str(job_id),
                command=command,
                args=args,
                env={str(k): str(v) for k, v in (step.get("env") or {}).items()},
                triggers=TriggerSpec(cron=list(triggers.cron), manual_dispatch=triggers.manual_dispatch),
                required_args=list(args),
                owner_guard=_owner_guard(job.get("if")),
                description=step.get("name", ""),
            )
        )
    return jobs


def load_workflow(path: str | Path) -> List[JobSpec]:
    document = load_document(Path(path))
    if not isinstance(document, dict):
        raise CatalogError(f"{path} is not a workflow mapping")
    return jobs_from_workflow(document)
