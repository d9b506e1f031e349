from __future__ import annotations

from cloud_workers_mcp.core.openspec import parse_openspec_content, parse_pr_url

SAMPLE = """# Refactor payment service

Split the payment service into gateway and ledger modules.

status: in_progress

## Files
- `src/payments/gateway.py`
* src/payments/ledger.py

## Plan
- [x] Extract gateway
"""


def test_parse_openspec_content_extracts_fields() -> None:
    change = parse_openspec_content(SAMPLE)

    assert change.title == "Refactor payment service"
    assert change.status == "in_progress"
    assert change.files == ["src/payments/gateway.py", "src/payments/ledger.py"]
    assert change.description.startswith("Split the payment service")
    assert change.raw_content == SAMPLE


def test_parse_openspec_content_defaults() -> None:
    change = parse_openspec_content("no headings here")

    assert change.title == ""
    assert change.status == "unknown"
    assert change.files == []
    assert change.description == ""


def test_description_is_capped() -> None:
    change = parse_openspec_content("# Title\n\n" + "x" * 900)

    assert len(change.description) == 500


def test_parse_pr_url() -> None:
    ref = parse_pr_url("https://github.com/acme/widgets/pull/42")

    assert ref is not None
    assert (ref.owner, ref.repo, ref.number) == ("acme", "widgets", 42)
    assert parse_pr_url("https://gitlab.com/acme/widgets/-/merge_requests/1") is None
    assert parse_pr_url("") is None
