"""
Unit tests for bootstrap/config.py, bootstrap/app.py and bootstrap/entrypoints.py
"""

import dataclasses
import json
import logging
from unittest.mock import Mock

import httpx
import pytest

from fingraph.bootstrap.app import AppContext, AppState, FinGraphApp
from fingraph.bootstrap.config import FinGraphConfig, get_config, load_config
from fingraph.bootstrap.entrypoints import main, setup_logging
from fingraph.client import FinGraphClient, RunSummary
from fingraph.core.enums import DomainNode
from fingraph.errors import ConfigurationError, ErrorCode


class TestConfig:
    """Test configuration loading."""

    def test_defaults(self):
        config = FinGraphConfig()
        assert config.graph.min_year == 1900
        assert config.graph.max_year == 2100
        assert config.events.max_entries == 10000
        assert config.api.default_events_limit == 20
        assert config.api.max_events_limit == 500

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("FINGRAPH_API_PORT", "9000")
        monkeypatch.setenv("FINGRAPH_MIN_YEAR", "2000")
        monkeypatch.setenv("FINGRAPH_API_CORS_ORIGINS", "http://a,http://b")
        monkeypatch.setenv("FINGRAPH_DEBUG", "true")

        config = FinGraphConfig.from_env()

        assert config.api.port == 9000
        assert config.graph.min_year == 2000
        assert config.api.cors_origins == ["http://a", "http://b"]
        assert config.debug is True

    def test_from_file_overlays_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FINGRAPH_API_PORT", "9000")
        path = tmp_path / "fingraph.json"
        path.write_text(json.dumps({
            "environment": "test",
            "graph": {"max_year": 2050, "edges": {"Tax": ["Decideur"]}},
            "events": {"max_entries": 50},
        }))

        config = FinGraphConfig.from_file(str(path))

        assert config.environment == "test"
        assert config.graph.max_year == 2050
        assert config.graph.edges == {"Tax": ["Decideur"]}
        assert config.events.max_entries == 50
        assert config.api.port == 9000

    def test_missing_file_falls_back(self, tmp_path):
        config = FinGraphConfig.from_file(str(tmp_path / "missing.json"))
        assert config.environment == "development"

    def test_load_and_get_config(self, tmp_path):
        path = tmp_path / "fingraph.json"
        path.write_text(json.dumps({"environment": "staging"}))

        loaded = load_config(str(path))

        assert get_config() is loaded
        assert loaded.environment == "staging"

    def test_to_dict(self):
        data = FinGraphConfig().to_dict()
        assert data["graph"]["min_year"] == 1900
        assert data["events"]["max_entries"] == 10000


class TestFinGraphApp:
    """Test application assembly."""

    def test_build(self, built_app):
        ctx = built_app.context

        assert ctx.state == AppState.RUNNING
        assert ctx.registry.is_valid
        assert ctx.orchestrator.is_ready
        assert ctx.orchestrator.event_log is ctx.event_log

    def test_context_holds_assembled_components(self, built_app):
        names = {f.name for f in dataclasses.fields(AppContext)}

        assert names == {
            "config", "registry", "orchestrator", "event_log",
            "data", "derived", "state", "start_time",
        }
        assert built_app.context.data is not None
        assert built_app.context.derived is not None

    def test_build_rejects_cyclic_graph(self):
        config = FinGraphConfig()
        config.graph.edges = {"Tax": ["Compta"], "Compta": ["Tax"]}
        app = FinGraphApp(config=config)

        with pytest.raises(ConfigurationError) as exc_info:
            app.build()

        assert exc_info.value.code == ErrorCode.CFG_CYCLIC_GRAPH
        assert app.context.state == AppState.FAILED

    def test_build_rejects_unknown_domain(self):
        config = FinGraphConfig()
        config.graph.edges = {"Tax": ["Banque"]}

        with pytest.raises(ConfigurationError):
            FinGraphApp(config=config).build()

    def test_custom_edges(self):
        config = FinGraphConfig()
        config.graph.edges = {"Tax": ["Decideur"]}
        app = FinGraphApp(config=config).build()

        assert app.orchestrator.propagation_order("Tax") == [DomainNode.TAX, DomainNode.DECIDEUR]

    def test_stop_exports_events(self, tmp_path):
        config = FinGraphConfig()
        config.events.export_path = str(tmp_path / "events.json")
        app = FinGraphApp(config=config).build()
        app.context.event_log.record("mutation", node="Tax")
        hook_calls = []
        app.on_shutdown(lambda ctx: hook_calls.append(ctx.state))

        app.stop()

        assert hook_calls == [AppState.RUNNING]
        assert app.context.state == AppState.STOPPED
        assert json.loads((tmp_path / "events.json").read_text())["count"] == 1


class TestEntrypoints:
    """Test the fingraph command."""

    @pytest.fixture(autouse=True)
    def _restore_root_logger(self):
        root = logging.getLogger()
        handlers = list(root.handlers)
        level = root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_setup_logging(self, tmp_path):
        log_file = tmp_path / "fingraph.log"
        setup_logging(level="DEBUG", log_file=str(log_file), json_format=True)

        logging.getLogger("fingraph.test").info("hello")

        record = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert record["message"] == "hello"
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_nodes_command(self, capsys):
        assert main(["nodes"]) == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert [line.split("\t")[0] for line in lines] == [
            "Tax", "Compta", "Immobilier", "Previsions", "Decideur",
        ]

    def test_validate_command(self, capsys):
        assert main(["validate"]) == 0
        assert json.loads(capsys.readouterr().out)["valid"] is True

    def test_validate_rejects_cycle(self, tmp_path, capsys):
        path = tmp_path / "fingraph.json"
        path.write_text(json.dumps({"graph": {"edges": {"Tax": ["Tax"]}}}))

        assert main(["-c", str(path), "validate"]) == 1
        assert json.loads(capsys.readouterr().out)["code"] == ErrorCode.CFG_CYCLIC_GRAPH.value

    @pytest.mark.parametrize("argv", [
        ["recalc", "Compta", "--year", "2024"],
        ["events", "--limit", "5"],
    ])
    def test_unreachable_server(self, argv, monkeypatch, capsys):
        def refuse(self, method, path, **kwargs):
            raise httpx.ConnectError("Connection refused")

        monkeypatch.setattr(FinGraphClient, "_request", refuse)

        assert main(argv + ["--url", "http://127.0.0.1:9"]) == 1
        assert "Could not reach FinGraph API" in capsys.readouterr().err

    def test_recalc_command(self, monkeypatch, capsys):
        run = RunSummary(
            source=DomainNode.COMPTA,
            order=(DomainNode.COMPTA, DomainNode.PREVISIONS),
            scope_key=2024,
            run_id="r1",
        )
        recalc = Mock(return_value=run)
        monkeypatch.setattr(FinGraphClient, "recalc", recalc)

        assert main(["recalc", "Compta", "--year", "2024"]) == 0

        recalc.assert_called_once_with("Compta", 2024)
        assert json.loads(capsys.readouterr().out)["order"] == ["Compta", "Previsions"]

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "fingraph" in capsys.readouterr().out
