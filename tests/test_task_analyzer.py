from __future__ import annotations

from cloud_workers_mcp.core.task_analyzer import analyze_task, suggestion_message


def test_small_task_stays_local() -> None:
    analysis = analyze_task("Rename a variable in utils.py")

    assert analysis.should_offload is False
    assert analysis.complexity == "low"
    assert analysis.estimated_minutes == 10
    assert suggestion_message("Rename a variable in utils.py") is None


def test_project_wide_refactor_is_high_complexity() -> None:
    analysis = analyze_task("Refactor all services across the codebase to use the new logger")

    assert analysis.complexity == "high"
    assert analysis.should_offload is True
    assert analysis.estimated_minutes == 60
    assert any(signal.startswith("scope:") for signal in analysis.signals)


def test_medium_independent_task_is_offloaded() -> None:
    analysis = analyze_task("Add tests and rewrite the database migration")

    assert analysis.complexity == "medium"
    assert analysis.should_offload is True


def test_file_count_signal() -> None:
    analysis = analyze_task("Update headers in 12 files")

    assert "file-count: 12" in analysis.signals


def test_suggestion_message_mentions_complexity() -> None:
    message = suggestion_message("Migrate all components to the design system across the codebase")

    assert message is not None
    assert "cloud offloading" in message
    assert "HIGH" in message
