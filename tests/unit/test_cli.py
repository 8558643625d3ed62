"""Tests for the tourquote CLI commands."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from typer.testing import CliRunner

from tourquote import cli
from tourquote.errors import StateConflictError
from tourquote.estimates.lifecycle import SubmissionResult

runner = CliRunner()


@pytest.fixture
def lifecycle(monkeypatch):
    lifecycle = SimpleNamespace(
        submit_to_expert=AsyncMock(),
        send_estimate=AsyncMock(),
        get_estimate=AsyncMock(),
    )
    monkeypatch.setattr(cli, "build_services", lambda: SimpleNamespace(lifecycle=lifecycle))
    monkeypatch.setattr(cli, "configure_logging", lambda: None)
    return lifecycle


def test_submit_reports_already_submitted(lifecycle):
    lifecycle.submit_to_expert.return_value = SubmissionResult(
        already_submitted=True, status="pending", estimate_id=2
    )

    result = runner.invoke(cli.app, ["submit", "s1"])

    assert result.exit_code == 0
    assert "Already submitted" in result.output
    lifecycle.submit_to_expert.assert_awaited_once_with("s1")


def test_submit_prints_warning(lifecycle):
    lifecycle.submit_to_expert.return_value = SubmissionResult(
        already_submitted=False,
        status="pending",
        estimate_id=2,
        warning="Estimate has 1 unresolved placeholder item(s)",
    )

    result = runner.invoke(cli.app, ["submit", "s1"])

    assert "Submitted" in result.output
    assert "unresolved placeholder" in result.output


def test_domain_error_exits_nonzero(lifecycle):
    lifecycle.send_estimate.side_effect = StateConflictError("Cannot send", current_status="draft")

    result = runner.invoke(cli.app, ["send", "4"])

    assert result.exit_code == 1
    assert "StateConflictError" in result.output


def test_show_lists_items(lifecycle):
    lifecycle.get_estimate.return_value = {
        "id": 4,
        "title": "AI Quote - Kim (서울 1D)",
        "status": "pending",
        "total_amount": "3000",
        "items": [
            {
                "day": 1,
                "display_name": "Gyeongbokgung Palace",
                "quantity": 1,
                "subtotal": "3000",
                "placeholder": False,
            },
            {
                "day": 1,
                "display_name": "Han River Cruise",
                "quantity": 1,
                "subtotal": "0",
                "placeholder": True,
            },
        ],
        "generation_metadata": {"confidence_score": 55, "source": "retrieval"},
        "revision_history": [],
    }

    result = runner.invoke(cli.app, ["show", "4"])

    assert result.exit_code == 0
    assert "Gyeongbokgung Palace" in result.output
    assert "Confidence: 55/100" in result.output
