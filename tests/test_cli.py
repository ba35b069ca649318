"""
Tests for the command line interface.

Commands run against an in-memory engine; ``build_engine`` is patched so
nothing touches WordPress or the Anthropic API.
"""
from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from conftest import A_ID, B_ID, C_ID, HUB_ID
from silo_linker.cli import _build_cli_parser, _run_cli, main
from silo_linker.config import LinkerConfig


def _run(engine, *argv):
    args = _build_cli_parser().parse_args(list(argv))
    return _run_cli(args, engine, LinkerConfig(data_dir=None))


@pytest.fixture
def silo(make_silo):
    return make_silo("linear")


class TestCommands:

    @pytest.mark.unit
    def test_create_silo(self, engine, capsys):
        code = _run(engine, "create-silo", "--name", "Herbs", "--hub", "1", "--members", "2,3",
                    "--mode", "star_hub", "--settings", '{"hub_to_supports": true}')
        assert code == 0
        silo = engine.store.get_silo(1)
        assert silo.support_ids == [2, 3]
        assert silo.link_settings().hub_to_supports is True
        assert "Created silo 1: Herbs (star_hub" in capsys.readouterr().out

    @pytest.mark.unit
    def test_generate_and_stats(self, engine, silo, capsys):
        assert _run(engine, "generate", "--silo", str(silo.silo_id)) == 0
        assert "Created 6 links" in capsys.readouterr().out
        assert _run(engine, "stats", "--silo", str(silo.silo_id)) == 0
        out = capsys.readouterr().out
        assert "Active links: 6" in out
        assert "Orphans: none" in out

    @pytest.mark.unit
    def test_generate_restricted_reports_skips(self, engine, silo, capsys):
        _run(engine, "generate", "--silo", str(silo.silo_id))
        capsys.readouterr()
        _run(engine, "generate", "--silo", str(silo.silo_id), "--nodes", str(C_ID))
        out = capsys.readouterr().out
        assert "Created 0 links" in out
        assert "already_linked" in out

    @pytest.mark.unit
    def test_preview_json(self, engine, silo, capsys):
        assert _run(engine, "preview", "--silo", str(silo.silo_id), "--json") == 0
        plan = json.loads(capsys.readouterr().out)
        assert [e["target_id"] for e in plan[str(HUB_ID)]] == [A_ID]
        assert engine.store.get_links() == []

    @pytest.mark.unit
    def test_preview_text(self, engine, silo, capsys):
        _run(engine, "preview", "--silo", str(silo.silo_id))
        out = capsys.readouterr().out
        assert f"[{A_ID}] 2 links" in out
        assert 'Anchor: "Tarot Spreads"' in out

    @pytest.mark.unit
    def test_remove(self, engine, silo, capsys):
        _run(engine, "generate", "--silo", str(silo.silo_id))
        assert _run(engine, "remove", "--node", str(B_ID), "--silo", str(silo.silo_id)) == 0
        assert _run(engine, "remove", "--silo", str(silo.silo_id)) == 0
        assert _run(engine, "remove") == 1
        assert "Removed links from 4 nodes" in capsys.readouterr().out
        assert engine.store.get_links(silo.silo_id, "active") == []

    @pytest.mark.unit
    def test_anchors_and_purge(self, engine, silo, capsys):
        _run(engine, "anchors")
        assert "No active anchors." in capsys.readouterr().out
        _run(engine, "generate", "--silo", str(silo.silo_id))
        _run(engine, "anchors", "--silo", str(silo.silo_id))
        assert "Tarot Spreads" in capsys.readouterr().out
        _run(engine, "remove", "--silo", str(silo.silo_id))
        _run(engine, "purge")
        assert "Purged 6 removed link records." in capsys.readouterr().out

    @pytest.mark.unit
    def test_update_anchor(self, engine, silo, capsys):
        _run(engine, "generate", "--silo", str(silo.silo_id))
        link = engine.store.get_links_from(HUB_ID, silo.silo_id)[0]
        _run(engine, "update-anchor", "--link", link.link_id, "--text", "tarot layouts")
        assert 'anchor is now "tarot layouts"' in capsys.readouterr().out

    @pytest.mark.unit
    def test_exclude(self, engine, capsys):
        _run(engine, "exclude", "--target", "9")
        _run(engine, "exclude", "--anchor", "Click Here")
        assert engine.store.is_excluded_target(9)
        assert engine.store.is_excluded_anchor("click here")
        _run(engine, "exclude", "--anchor", "click here", "--remove")
        assert not engine.store.is_excluded_anchor("click here")
        assert "Removed anchor exclusion" in capsys.readouterr().out

    @pytest.mark.unit
    def test_recommend(self, engine, capsys):
        _run(engine, "recommend", "--hub", str(HUB_ID), "--candidates", f"{A_ID},{B_ID}")
        assert f"Recommended supports for {HUB_ID}:" in capsys.readouterr().out

    @pytest.mark.unit
    def test_test_suggester(self, engine, capsys):
        assert _run(engine, "test-suggester") == 1
        engine.suggester = MagicMock()
        engine.suggester.test_connection.return_value = {"success": True, "model": "m", "response": "OK"}
        assert _run(engine, "test-suggester") == 0
        assert "Suggester OK (m): OK" in capsys.readouterr().out

    @pytest.mark.unit
    def test_bad_id_list(self):
        with pytest.raises(SystemExit):
            _build_cli_parser().parse_args(["generate", "--silo", "1", "--nodes", "a,b"])


class TestMain:

    @pytest.fixture
    def config_path(self, tmp_path):
        path = tmp_path / "silo-linker.json"
        path.write_text(json.dumps({"data_dir": ""}), encoding="utf-8")
        return path

    @pytest.mark.unit
    def test_main_exit_codes(self, engine, silo, config_path):
        with patch("silo_linker.cli.build_engine", return_value=engine):
            with pytest.raises(SystemExit) as exc_info:
                main(["--config", str(config_path), "generate", "--silo", str(silo.silo_id)])
        assert exc_info.value.code == 0

    @pytest.mark.unit
    def test_main_reports_errors(self, engine, config_path, capsys):
        with patch("silo_linker.cli.build_engine", return_value=engine):
            with pytest.raises(SystemExit) as exc_info:
                main(["--config", str(config_path), "stats", "--silo", "99"])
        assert exc_info.value.code == 1
        assert "Silo 99 not found" in capsys.readouterr().out

    @pytest.mark.unit
    def test_main_without_command(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1
