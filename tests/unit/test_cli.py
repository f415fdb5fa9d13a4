# tests/unit/test_cli.py
"""
Unit tests for the command line entry point and structured logging
"""
import json
import logging

import pytest

from main import main, parse_arguments
from monitoring.logger import ANALYSIS_LOG, JsonFormatter, StructuredLogger
from tests.fixtures.mock_data import HEALTHY_TOKEN, sample_score


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers = handlers
    root.setLevel(level)


@pytest.mark.unit
class TestArguments:

    def test_analyze(self):
        args = parse_arguments(['analyze', HEALTHY_TOKEN, '--force-refresh', '--summary'])
        assert args.command == 'analyze'
        assert args.address == HEALTHY_TOKEN
        assert args.force_refresh and args.summary
        assert not args.progress

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_arguments([])

    def test_invalid_address_exit_code(self, capsys):
        assert main(['analyze', 'not-a-token']) == 2
        assert "Invalid Solana token address" in capsys.readouterr().err


@pytest.mark.unit
class TestStructuredLogger:

    def test_writes_log_files(self, tmp_path, restore_root_logger):
        structured = StructuredLogger("scorer", {"log_dir": str(tmp_path), "outputs": ["file"]})
        structured.log_analysis(sample_score())
        for handler in logging.getLogger().handlers:
            handler.flush()

        analyses = (tmp_path / "scorer_analyses.log").read_text()
        assert HEALTHY_TOKEN in analyses
        main_log = (tmp_path / "scorer.log").read_text().strip().splitlines()
        record = json.loads(main_log[-1])
        assert record["level"] == "ANALYSIS"
        assert record["analysis"]["super_score"] == sample_score().super_score

    def test_log_error_saves_json(self, tmp_path, restore_root_logger):
        structured = StructuredLogger("scorer", {"log_dir": str(tmp_path), "outputs": ["file"]})
        structured.log_error(RuntimeError("pipeline down"), {'function': 'analyze_token'})

        errors = json.loads((tmp_path / "errors.json").read_text())
        assert errors[-1]["error_type"] == "RuntimeError"
        assert errors[-1]["context"] == {'function': 'analyze_token'}

    def test_json_formatter(self):
        record = logging.LogRecord("x", ANALYSIS_LOG, __file__, 1, "done", None, None)
        record.analysis_data = {'super_score': 90}
        payload = json.loads(JsonFormatter().format(record))
        assert payload["analysis"] == {'super_score': 90}
        assert payload["message"] == "done"
