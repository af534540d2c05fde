from __future__ import annotations

import re
from pathlib import Path

import allure
from click.testing import CliRunner

from ai_task_platform.main import ai_tasks
from ai_task_platform.tasks.controllers import parse_inputs

pytestmark = [
    allure.epic("Platform"),
    allure.feature("CLI"),
]


def _invoke(runner: CliRunner, *args: str):
    result = runner.invoke(ai_tasks, list(args))
    assert result.exit_code == 0, result.output
    return result


def _error_text(result) -> str:
    assert result.exit_code != 0
    return " ".join(result.output.replace("\u2502", " ").split())


def _task_id(output: str) -> str:
    match = re.search(r"task_id=(\d+)", output)
    assert match is not None, output
    return match.group(1)


def test_types_lists_builtin_types(sandbox_env: Path) -> None:
    result = _invoke(CliRunner(), "types", "--db-path", str(sandbox_env))

    assert "keyword_research: Keyword Research cost=5 approval=no" in result.output
    assert "content_generation: Content Generation cost=10 approval=yes" in result.output
    assert "processor=yes" in result.output


def test_credits_create_worker_and_inspect(sandbox_env: Path) -> None:
    runner = CliRunner()
    db = str(sandbox_env)

    grant = _invoke(runner, "credits", "grant", "--db-path", db, "--amount", "50")
    assert "Granted 50 credits to user 7 (balance=50)" in grant.output

    create = _invoke(
        runner,
        "create",
        "--db-path",
        db,
        "--type",
        "keyword_research",
        "--title",
        "Research shoes",
        "--input",
        "seed_keyword=running shoes",
        "--priority",
        "80",
    )
    assert "status=pending priority=80" in create.output
    assert "Credits charged: 5 (balance=45)" in create.output
    task_id = _task_id(create.output)

    worker = _invoke(runner, "worker", "--db-path", db, "--once")
    assert "dispatched=1" in worker.output

    inspect = _invoke(runner, "inspect", "--db-path", db, "--task-id", task_id)
    assert "Status: Completed" in inspect.output
    assert '"seed_keyword": "running shoes"' in inspect.output
    assert "Task status updated to: Completed" in inspect.output

    listing = _invoke(runner, "tasks", "--db-path", db, "--status", "completed")
    assert f"{task_id} [completed] p=80 keyword_research user=7" in listing.output

    balance = _invoke(runner, "credits", "balance", "--db-path", db)
    assert "User 7 balance: 45" in balance.output
    assert f"-5 task_cost ref={task_id}" in balance.output


def test_approve_dispatches_immediately(sandbox_env: Path) -> None:
    runner = CliRunner()
    db = str(sandbox_env)
    _invoke(runner, "credits", "grant", "--db-path", db, "--amount", "20")

    create = _invoke(
        runner,
        "create",
        "--db-path",
        db,
        "--type",
        "content_generation",
        "--title",
        "Write article",
        "--inputs-json",
        '{"topic": "trail running", "word_count": 200}',
    )
    assert "status=approval_required" in create.output
    task_id = _task_id(create.output)

    approve = _invoke(runner, "approve", "--db-path", db, "--task-id", task_id)

    assert f"Task approved: {task_id}" in approve.output
    assert "Status: completed" in approve.output


def test_dependencies_priority_and_cancel(sandbox_env: Path) -> None:
    runner = CliRunner()
    db = str(sandbox_env)
    _invoke(runner, "credits", "grant", "--db-path", db, "--amount", "100")
    first = _task_id(
        _invoke(
            runner,
            "create",
            "--db-path",
            db,
            "--type",
            "keyword_research",
            "--title",
            "First",
        ).output,
    )
    second = _task_id(
        _invoke(
            runner,
            "create",
            "--db-path",
            db,
            "--type",
            "keyword_research",
            "--title",
            "Second",
        ).output,
    )

    depend = _invoke(runner, "depend", "--db-path", db, "--task-id", second, "--on", first)
    assert "status=waiting_dependency" in depend.output

    cycle = runner.invoke(ai_tasks, ["depend", "--db-path", db, "--task-id", first, "--on", second])
    assert "circular dependency" in _error_text(cycle)

    undepend = _invoke(runner, "undepend", "--db-path", db, "--task-id", second, "--on", first)
    assert "status=pending" in undepend.output

    priority = _invoke(runner, "priority", "--db-path", db, "--task-id", second, "--value", "99")
    assert "priority=99" in priority.output

    cancel = _invoke(runner, "cancel", "--db-path", db, "--task-id", second)
    assert f"Task canceled: {second}" in cancel.output
    again = runner.invoke(ai_tasks, ["cancel", "--db-path", db, "--task-id", second])
    assert again.exit_code != 0


def test_create_errors_are_reported(sandbox_env: Path) -> None:
    runner = CliRunner()
    db = str(sandbox_env)

    broke = runner.invoke(
        ai_tasks,
        ["create", "--db-path", db, "--type", "seo_audit", "--title", "Audit"],
    )
    assert "Insufficient credits: required=15, available=0." in _error_text(broke)

    unknown = runner.invoke(
        ai_tasks,
        ["create", "--db-path", db, "--type", "nope", "--title", "X"],
    )
    assert "Invalid task type: nope" in _error_text(unknown)

    bad_json = runner.invoke(
        ai_tasks,
        ["create", "--db-path", db, "--type", "seo_audit", "--title", "X", "--inputs-json", "[1]"],
    )
    assert "--inputs-json must be a JSON object" in _error_text(bad_json)


def test_cache_and_api_usage_commands(sandbox_env: Path) -> None:
    runner = CliRunner()
    db = str(sandbox_env)

    stats = _invoke(runner, "cache", "stats", "--db-path", db)
    assert "Cached items: 0 (expired=0)" in stats.output

    cleared = _invoke(runner, "cache", "clear", "--db-path", db, "--service", "openai")
    assert "Cache entries removed: 0" in cleared.output

    endpoint_only = runner.invoke(ai_tasks, ["cache", "clear", "--db-path", db, "--endpoint", "x"])
    assert "--endpoint requires --service" in _error_text(endpoint_only)

    usage = _invoke(runner, "api-usage", "--db-path", db, "--service", "dataforseo")
    assert "dataforseo usage (month): calls=0 credits=0" in usage.output


def test_inspect_missing_task(sandbox_env: Path) -> None:
    result = _invoke(CliRunner(), "inspect", "--db-path", str(sandbox_env), "--task-id", "404")

    assert "Task not found: 404" in result.output


def test_parse_inputs_merges_json_and_pairs() -> None:
    assert parse_inputs('{"a": 1, "b": "x"}', ("b=2", "tags=[\"x\"]", "name=plain text")) == {
        "a": 1,
        "b": 2,
        "tags": ["x"],
        "name": "plain text",
    }
