import csv
import io
import json

import pytest

from crisp.audit import CSV_COLUMNS, InMemoryAuditLogger
from crisp.plan import ActionResult, ExecutionPhase


async def _logger_with_entries() -> InMemoryAuditLogger:
    audit = InMemoryAuditLogger("s1", agent_id="orchestrator")
    await audit.log_action(
        "create_plan", ExecutionPhase.PLANNING, ActionResult.SUCCESS, "Plan with 7 steps", {"steps": 7}
    )
    await audit.log_action(
        "scm.create_repository",
        ExecutionPhase.EXECUTION,
        ActionResult.FAILURE,
        'name "widgets", already exists',
    )
    return audit


@pytest.mark.asyncio
async def test_entries_are_kept_in_order() -> None:
    audit = await _logger_with_entries()

    entries = audit.entries()

    assert [entry.action for entry in entries] == ["create_plan", "scm.create_repository"]
    assert entries[0].parameters == {"steps": 7}
    assert all(entry.session_id == "s1" for entry in entries)
    assert audit.entries("other") == []


@pytest.mark.asyncio
async def test_json_export() -> None:
    audit = await _logger_with_entries()

    exported = json.loads(audit.export("json"))

    assert exported[0]["phase"] == "planning"
    assert exported[1]["result"] == "failure"
    assert exported[0]["agent_id"] == "orchestrator"


@pytest.mark.asyncio
async def test_csv_export_quotes_detail() -> None:
    audit = await _logger_with_entries()

    rows = list(csv.reader(io.StringIO(audit.export("CSV"))))

    assert tuple(rows[0]) == CSV_COLUMNS
    assert len(rows) == 3
    assert rows[2][CSV_COLUMNS.index("detail")] == 'name "widgets", already exists'
    assert rows[1][CSV_COLUMNS.index("duration_ms")] == ""


def test_unknown_export_format() -> None:
    with pytest.raises(ValueError):
        InMemoryAuditLogger("s1").export("xml")
