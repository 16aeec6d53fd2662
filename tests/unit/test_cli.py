"""Tests for CLI module."""

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, Mock, patch

import pytest

from testing_manager.atelier.client import AtelierError
from testing_manager.cli import coverage_summary, format_output, log_results_summary, run
from testing_manager.models.coverage import (
    CoverageCount,
    CoverageDetail,
    CoverageRecord,
    DeclarationCoverage,
    StatementCoverage,
)
from testing_manager.models.node import ResourceUri, TestNode
from testing_manager.orchestrator import BatchOutcome
from testing_manager.testing.factories import TestResultFactory


def test_log_results_summary_passed(caplog: pytest.LogCaptureFixture) -> None:
    """Logs passed results with a check mark and duration."""
    results = [
        TestResultFactory.build(
            node_id="0:iris:USER:pkg.A:TestOne", status="passed", duration_ms=12.0
        )
    ]

    with caplog.at_level(logging.INFO):
        log_results_summary(logging.getLogger(), results, [])

    assert "Test Results Summary:" in caplog.text
    assert "✅ 0:iris:USER:pkg.A:TestOne: passed (12ms)" in caplog.text


def test_log_results_summary_failed_with_messages(caplog: pytest.LogCaptureFixture) -> None:
    """Logs failure messages beneath the result."""
    results = [
        TestResultFactory.build(
            node_id="0:iris:USER:pkg.A:TestTwo",
            status="failed",
            messages=("expected 1 got 2",),
        )
    ]

    with caplog.at_level(logging.INFO):
        log_results_summary(logging.getLogger(), results, [])

    assert "❌ 0:iris:USER:pkg.A:TestTwo: failed" in caplog.text
    assert "Message: expected 1 got 2" in caplog.text


def test_log_results_summary_batch_errors(caplog: pytest.LogCaptureFixture) -> None:
    """Logs batches that failed before running."""
    outcomes = [BatchOutcome(authority="iris:user", error="Failed to launch testing")]

    with caplog.at_level(logging.INFO):
        log_results_summary(logging.getLogger(), [], outcomes)

    assert "❗ iris:user: Failed to launch testing" in caplog.text


def test_format_output_empty() -> None:
    """Returns empty totals when no results."""
    assert format_output([], []) == {
        "total": 0,
        "passed": 0,
        "failed": 0,
        "errored": 0,
        "skipped": 0,
        "results": [],
        "batch_errors": [],
    }


def test_format_output_mixed_results() -> None:
    """Counts each status and adds batch errors to the errored total."""
    results = [
        TestResultFactory.build(status="passed"),
        TestResultFactory.build(status="passed"),
        TestResultFactory.build(status="failed", messages=("boom",)),
        TestResultFactory.build(status="skipped"),
    ]
    outcomes = [
        BatchOutcome(authority="iris:user"),
        BatchOutcome(authority="iris:samples", error="No server connection"),
    ]

    output = format_output(results, outcomes)

    assert output["total"] == 4
    assert output["passed"] == 2
    assert output["failed"] == 1
    assert output["errored"] == 1
    assert output["skipped"] == 1
    assert output["results"][2]["messages"] == ["boom"]
    assert output["batch_errors"] == [
        {"authority": "iris:samples", "error": "No server connection"}
    ]


class TestRun:
    """Tests for run function."""

    @pytest.fixture
    def config_path(self, tmp_path: Path) -> Path:
        """Write a configuration without workspace folders."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"mode": "local", "launcher": {"key": "shell"}}))
        return path

    @pytest.fixture
    def mock_manifest(self) -> Mock:
        """Create mock launcher manifest."""
        manifest = Mock()
        manifest.create = Mock(return_value=Mock())
        return manifest

    async def run_with(
        self,
        config_path: Path,
        mock_manifest: Mock,
        statuses: Sequence[str],
        outcomes: Sequence[BatchOutcome] = (),
        coverage: Sequence[CoverageRecord] = (),
        profile: str = "run",
    ) -> int:
        """Run the CLI with an orchestrator that reports `statuses`."""
        with (
            patch("testing_manager.cli.load_launcher_manifest", return_value=mock_manifest),
            patch("testing_manager.cli.TestOrchestrator") as mock_orchestrator_cls,
        ):

            async def run_tests(*args: Any) -> Sequence[BatchOutcome]:
                factory = mock_orchestrator_cls.call_args.kwargs["recorder_factory"]
                recorder = factory("Test Results")
                for index, status in enumerate(statuses):
                    node = TestNode(id=f"0:iris:USER:pkg.A:Test{index}", label=str(index))
                    if status == "failed":
                        recorder.failed(node, ["boom"])
                    else:
                        getattr(recorder, status)(node)
                for record in coverage:
                    recorder.add_coverage(record)
                return outcomes

            mock_orchestrator = Mock()
            mock_orchestrator.run_tests = AsyncMock(side_effect=run_tests)
            mock_orchestrator_cls.return_value = mock_orchestrator

            return await run(config_path=config_path, profile=profile)

    async def test_returns_zero_when_all_tests_pass(
        self,
        config_path: Path,
        mock_manifest: Mock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Returns 0 and prints the summary when all tests pass."""
        exit_code = await self.run_with(config_path, mock_manifest, ["passed", "passed"])

        assert exit_code == 0
        captured = capsys.readouterr()
        assert '"passed": 2' in captured.out
        mock_manifest.create.assert_called_once()
        assert mock_manifest.create.call_args.args[0] == {}

    async def test_returns_one_when_test_fails(
        self, config_path: Path, mock_manifest: Mock
    ) -> None:
        """Returns 1 when any test fails."""
        exit_code = await self.run_with(config_path, mock_manifest, ["passed", "failed"])

        assert exit_code == 1

    async def test_returns_one_on_batch_error(
        self, config_path: Path, mock_manifest: Mock
    ) -> None:
        """Returns 1 when a batch could not be run."""
        outcomes = [BatchOutcome(authority="iris:user", error="Failed to launch testing")]

        exit_code = await self.run_with(config_path, mock_manifest, [], outcomes)

        assert exit_code == 1

    async def test_returns_zero_for_empty_run(
        self, config_path: Path, mock_manifest: Mock
    ) -> None:
        """Returns 0 when nothing ran."""
        exit_code = await self.run_with(config_path, mock_manifest, [])

        assert exit_code == 0

    async def test_coverage_run_reports_coverage(
        self,
        config_path: Path,
        mock_manifest: Mock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Coverage runs print per-file counts with line and method detail."""
        loader = AsyncMock(
            return_value=CoverageDetail(
                executable_lines=b"\x07",
                covered_lines=b"\x05",
                statements=[
                    StatementCoverage(line=1, covered=True),
                    StatementCoverage(line=2, covered=False),
                    StatementCoverage(line=3, covered=True),
                ],
                declarations=[
                    DeclarationCoverage(name="Run", start_line=1, end_line=None, covered=True)
                ],
            )
        )
        record = coverage_record(loader)

        exit_code = await self.run_with(
            config_path, mock_manifest, ["passed"], coverage=[record], profile="coverage"
        )

        assert exit_code == 0
        output = json.loads(capsys.readouterr().out)
        assert output["coverage"] == [
            {
                "uri": "file:///work/app/src/pkg/Thing.cls",
                "code_unit": "abc",
                "statements": {"covered": 2, "total": 3},
                "declarations": {"covered": 1, "total": 1},
                "tests": [],
                "covered_lines": [1, 3],
                "uncovered_lines": [2],
                "methods": [
                    {"name": "Run", "start_line": 1, "end_line": None, "covered": True}
                ],
            }
        ]
        loader.assert_awaited_once_with(record, None)

    async def test_plain_run_has_no_coverage_section(
        self,
        config_path: Path,
        mock_manifest: Mock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        await self.run_with(config_path, mock_manifest, ["passed"])

        assert "coverage" not in json.loads(capsys.readouterr().out)


def coverage_record(detail_loader: AsyncMock | None) -> CoverageRecord:
    return CoverageRecord(
        uri=ResourceUri.file("/work/app/src/pkg/Thing.cls"),
        code_unit="abc",
        coverage_index=7,
        statement_coverage=CoverageCount(covered=2, total=3),
        declaration_coverage=CoverageCount(covered=1, total=1),
        detail_loader=detail_loader,
    )


async def test_coverage_summary_keeps_counts_when_detail_fails() -> None:
    """A detail query failure still reports the aggregate counts."""
    record = coverage_record(AsyncMock(side_effect=AtelierError("query failed", status=500)))

    (entry,) = await coverage_summary([record])

    assert entry["statements"] == {"covered": 2, "total": 3}
    assert "covered_lines" not in entry


async def test_coverage_summary_narrows_to_single_test() -> None:
    """Detail is loaded for the one test that ran."""
    loader = AsyncMock(
        return_value=CoverageDetail(
            executable_lines=b"", covered_lines=b"", statements=[], declarations=[]
        )
    )
    record = coverage_record(loader)
    method = TestNode(id="0:iris:USER:pkg.A:TestOne", label="One")

    (entry,) = await coverage_summary([record], method)

    loader.assert_awaited_once_with(record, method)
    assert entry["methods"] == []
