from pathlib import Path

import pytest

from cadence.errors import CatalogError
from cadence.invoker import build_command
from cadence.workflow import jobs_from_workflow, load_workflow, split_command


def test_workflow_file_parses(workflow_path: Path) -> None:
    jobs = load_workflow(workflow_path)
    assert [job.id for job in jobs] == ["update_top_ranking_issues"]

    job = jobs[0]
    assert job.triggers.cron == ["0 */12 * * *"]
    assert job.triggers.manual_dispatch is True
    assert job.owner_guard == "zed-industries"
    assert job.description == "Run script"
    assert job.command == [
        "uv",
        "run",
        "--project",
        "script/update_top_ranking_issues",
        "script/update_top_ranking_issues/main.py",
    ]
    assert job.args == {
        "--github-token": "${{secrets.GITHUB_TOKEN}}",
        "--issue-reference-number": "5393",
    }
    assert job.required_args == ["--github-token", "--issue-reference-number"]


def test_imported_job_builds_full_command(workflow_path: Path) -> None:
    job = load_workflow(workflow_path)[0]
    argv = build_command(job, {"GITHUB_TOKEN": "token"})
    assert argv[-4:] == ["--github-token", "token", "--issue-reference-number", "5393"]


def test_split_command_handles_equals_and_trailing_flags() -> None:
    command, args = split_command("python main.py --mode=fast --count 2")
    assert command == ["python", "main.py"]
    assert args == {"--mode": "fast", "--count": "2"}

    command, args = split_command("tool --verbose")
    assert command == ["tool", "--verbose"]
    assert args == {}


def test_string_and_list_triggers() -> None:
    document = {"on": "workflow_dispatch", "jobs": {"a": {"steps": [{"run": "echo hi"}]}}}
    job = jobs_from_workflow(document)[0]
    assert job.triggers.cron == []
    assert job.triggers.manual_dispatch is True
    assert job.owner_guard is None

    document = {True: ["push"], "jobs": {"a": {"steps": [{"run": "echo hi"}]}}}
    assert jobs_from_workflow(document)[0].triggers.manual_dispatch is False


def test_jobs_without_run_steps_are_ignored() -> None:
    document = {"on": {"schedule": [{"cron": "0 0 * * *"}]}, "jobs": {"a": {"steps": [{"uses": "x"}]}}}
    assert jobs_from_workflow(document) == []


def test_workflow_without_triggers_is_rejected() -> None:
    with pytest.raises(CatalogError):
        jobs_from_workflow({"jobs": {}})


@pytest.mark.parametrize(
    "run",
    [
        "make && make install",
        "echo a\necho b",
        "cat log | tail -n 5",
        "./script.sh > out.txt",
        "false || true",
    ],
)
def test_split_command_rejects_shell_syntax(run: str) -> None:
    with pytest.raises(CatalogError, match="single command"):
        split_command(run)


def test_block_scalar_run_step_with_one_command_is_accepted() -> None:
    command, args = split_command("python main.py --token ${{ secrets.TOKEN }}\n")
    assert command == ["python", "main.py"]
    assert args == {"--token": "${{secrets.TOKEN}}"}


def test_multi_line_final_run_step_is_rejected() -> None:
    document = {
        "on": "workflow_dispatch",
        "jobs": {"a": {"steps": [{"run": "echo setup"}, {"run": "cd app\npython main.py"}]}},
    }
    with pytest.raises(CatalogError):
        jobs_from_workflow(document)
