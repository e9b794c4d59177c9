from __future__ import annotations

import subprocess
from typing import Any, Dict, List

import pytest

from cadence import invoker as invoker_module
from cadence.catalog import Catalog
from cadence.errors import InvocationError, SecretNotFound
from cadence.invoker import ScheduledInvoker, build_command, mask_command, resolve_args
from cadence.models import TRIGGER_MANUAL, TRIGGER_SCHEDULE, JobSpec, TriggerSpec

SECRETS = {"GITHUB_TOKEN": "ghs_example_token"}


class FakeRun:
    def __init__(self, returncode: int = 0) -> None:
        self.returncode = returncode
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, command, **kwargs) -> subprocess.CompletedProcess:
        self.calls.append({"command": list(command), **kwargs})
        return subprocess.CompletedProcess(list(command), self.returncode, "", "")


@pytest.fixture
def fake_run(monkeypatch: pytest.MonkeyPatch) -> FakeRun:
    fake = FakeRun()
    monkeypatch.setattr(invoker_module, "run_command", fake)
    return fake


def test_command_contains_both_required_arguments(catalog: Catalog) -> None:
    job = catalog.get_job("update_top_ranking_issues")
    argv = build_command(job, SECRETS)
    assert argv[:2] == ["uv", "run"]
    assert argv[-4:] == ["--github-token", "ghs_example_token", "--issue-reference-number", "5393"]


def test_missing_secret_raises(catalog: Catalog) -> None:
    job = catalog.get_job("update_top_ranking_issues")
    with pytest.raises(SecretNotFound) as excinfo:
        resolve_args(job, {})
    assert excinfo.value.name == "GITHUB_TOKEN"


def test_missing_required_argument_raises() -> None:
    job = JobSpec(id="demo", command=["demo"], args={"--a": "1"}, required_args=["--a", "--b"])
    with pytest.raises(InvocationError, match="--b"):
        build_command(job, {})


def test_mask_command_hides_secret(catalog: Catalog) -> None:
    job = catalog.get_job("update_top_ranking_issues")
    masked = mask_command(job, build_command(job, SECRETS), SECRETS)
    assert "ghs_example_token" not in " ".join(masked)
    assert masked[-3] == "***"


def test_invoke_runs_once_and_records_masked_command(catalog: Catalog, fake_run: FakeRun) -> None:
    invoker = ScheduledInvoker(catalog.jobs, secrets=SECRETS, repository_owner="zed-industries")
    result = invoker.invoke("update_top_ranking_issues", TRIGGER_SCHEDULE)

    assert len(fake_run.calls) == 1
    assert fake_run.calls[0]["command"][-1] == "5393"
    assert fake_run.calls[0]["capture"] is False
    assert result is not None
    assert result.succeeded
    assert result.trigger == TRIGGER_SCHEDULE
    assert "***" in result.command
    assert "ghs_example_token" not in result.to_dict()["command"]


def test_non_zero_exit_is_surfaced_without_retry(catalog: Catalog, fake_run: FakeRun) -> None:
    fake_run.returncode = 3
    invoker = ScheduledInvoker(catalog.jobs, secrets=SECRETS, repository_owner="zed-industries")
    with pytest.raises(InvocationError) as excinfo:
        invoker.invoke("update_top_ranking_issues", TRIGGER_MANUAL)
    assert excinfo.value.returncode == 3
    assert len(fake_run.calls) == 1


def test_owner_guard_skips_other_owners(catalog: Catalog, fake_run: FakeRun) -> None:
    invoker = ScheduledInvoker(catalog.jobs, secrets=SECRETS, repository_owner="someone-else")
    assert invoker.invoke("update_top_ranking_issues") is None
    assert fake_run.calls == []


def test_trigger_kinds_follow_job_triggers(fake_run: FakeRun) -> None:
    jobs = {
        "cron_only": JobSpec(
            id="cron_only",
            command=["true"],
            triggers=TriggerSpec(cron=["0 */12 * * *"], manual_dispatch=False),
        ),
        "manual_only": JobSpec(id="manual_only", command=["true"], triggers=TriggerSpec(cron=[])),
    }
    invoker = ScheduledInvoker(jobs, secrets={})
    with pytest.raises(InvocationError, match="manual dispatch"):
        invoker.invoke("cron_only", TRIGGER_MANUAL)
    with pytest.raises(InvocationError, match="no cron schedule"):
        invoker.invoke("manual_only", TRIGGER_SCHEDULE)
    with pytest.raises(InvocationError, match="Unknown job id"):
        invoker.invoke("missing")
    assert invoker.invoke("manual_only", TRIGGER_MANUAL) is not None


def test_env_secrets_are_resolved(fake_run: FakeRun) -> None:
    job = JobSpec(id="env", command=["env"], env={"TOKEN": "${{ secrets.GITHUB_TOKEN }}"})
    ScheduledInvoker({"env": job}, secrets=SECRETS).invoke("env")
    assert fake_run.calls[0]["env"] == {"TOKEN": "ghs_example_token"}
