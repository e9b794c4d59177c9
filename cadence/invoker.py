"""Build and fire the external command of a job, once per trigger event."""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

from .errors import InvocationError, SecretNotFound
from .models import TRIGGER_MANUAL, TRIGGER_SCHEDULE, InvocationResult, JobSpec
from .utils import mask_values, run_command

logger = logging.getLogger(__name__)

SECRET_PATTERN = re.compile(r"\$\{\{\s*secrets\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def _substitute(value: str, secrets: Mapping[str, str], used: Dict[str, str]) -> str:
    def replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        secret = secrets.get(name)
        if not secret:
            raise SecretNotFound(name)
        used[name] = secret
        return secret

    return SECRET_PATTERN.sub(replace, value)


def resolve_args(job: JobSpec, secrets: Mapping[str, str]) -> Dict[str, str]:
    """Return the job's flags with every secret reference substituted."""

    used: Dict[str, str] = {}
    return {flag: _substitute(value, secrets, used) for flag, value in job.args.items()}


def secret_values(job: JobSpec, secrets: Mapping[str, str]) -> List[str]:
    """Secret values a job's command or environment would expose."""

    names = set()
    for value in list(job.args.values()) + list(job.env.values()):
        names.update(SECRET_PATTERN.findall(value))
    return [secrets[name] for name in sorted(names) if secrets.get(name)]


def build_command(job: JobSpec, secrets: Mapping[str, str]) -> List[str]:
    """Command line for ``job``: the base command then each flag and value in order."""

    argv = list(job.command)
    for flag, value in resolve_args(job, secrets).items():
        argv.extend([flag, value])
    missing = [flag for flag in job.required_args if flag not in argv]
    if missing:
        raise InvocationError(
            f"Job {job.id} is missing required arguments: {', '.join(missing)}",
            job_id=job.id,
        )
    return argv


def mask_command(job: JobSpec, argv: List[str], secrets: Mapping[str, str]) -> List[str]:
    return mask_values(argv, secret_values(job, secrets))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ScheduledInvoker:
    """Fires job commands. No retries and no inspection of the command's output."""

    def __init__(
        self,
        jobs: Mapping[str, JobSpec],
        *,
        secrets: Optional[Mapping[str, str]] = None,
        repository_owner: Optional[str] = None,
    ) -> None:
        self.jobs = jobs
        self.secrets = secrets if secrets is not None else os.environ
        self.repository_owner = repository_owner

    def _job(self, job_id: str) -> JobSpec:
        try:
            return self.jobs[job_id]
        except KeyError as exc:
            raise InvocationError(f"Unknown job id: {job_id}", job_id=job_id) from exc

    def _check_trigger(self, job: JobSpec, trigger: str) -> None:
        if trigger == TRIGGER_MANUAL and not job.triggers.manual_dispatch:
            raise InvocationError(f"Job {job.id} does not allow manual dispatch", job_id=job.id)
        if trigger == TRIGGER_SCHEDULE and not job.triggers.cron:
            raise InvocationError(f"Job {job.id} has no cron schedule", job_id=job.id)
        if trigger not in (TRIGGER_MANUAL, TRIGGER_SCHEDULE):
            raise InvocationError(f"Unknown trigger kind: {trigger}", job_id=job.id)

    def should_run(self, job: JobSpec) -> bool:
        if job.owner_guard is None:
            return True
        return job.owner_guard == self.repository_owner

    def invoke(self, job_id: str, trigger: str = TRIGGER_MANUAL) -> Optional[InvocationResult]:
        """Run the job's command once. Returns ``None`` when the owner guard skips it."""

        job = self._job(job_id)
        self._check_trigger(job, trigger)
        if not self.should_run(job):
            logger.info(
                "Skipping %s: repository owner %r does not match %r",
                job.id,
                self.repository_owner,
                job.owner_guard,
            )
            return None

        argv = build_command(job, self.secrets)
        used: Dict[str, str] = {}
        env = {key: _substitute(value, self.secrets, used) for key, value in job.env.items()}
        masked = mask_command(job, argv, self.secrets)

        logger.info("Invoking %s (%s): %s", job.id, trigger, " ".join(masked))
        started_at = _now()
        try:
            completed = run_command(argv, cwd=job.cwd, env=env, capture=False)
        except OSError as exc:
            raise InvocationError(f"Job {job.id} could not start: {exc}", job_id=job.id) from exc
        result = InvocationResult(
            job_id=job.id,
            trigger=trigger,
            command=masked,
            returncode=completed.returncode,
            started_at=started_at,
            finished_at=_now(),
        )

        if not result.succeeded:
            logger.error("Job %s exited with code %s", job.id, result.returncode)
            raise InvocationError(
                f"Job {job.id} exited with code {result.returncode}",
                job_id=job.id,
                returncode=result.returncode,
            )
        logger.info("Job %s finished", job.id)
        return result
