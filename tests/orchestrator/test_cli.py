"""
CLI Tests.
"""

import pytest

from core.constants import FILE_SIZE_PRESETS
from orchestrator import ProbeMode, build_config, create_parser, main, show_phases, validate_args


@pytest.fixture
def env_file(tmp_path):
    return str(tmp_path / "missing.env")


class TestParser:

    def test_defaults_leave_environment(self, env_file, monkeypatch):
        monkeypatch.setenv("QAB_MAX_PENDING_DEALS", "7")
        monkeypatch.delenv("QAB_STANDALONE", raising=False)
        args = create_parser().parse_args(["--env-file", env_file])

        config = build_config(args)

        assert config.engine.admission.max_pending == 7
        assert config.mode is ProbeMode.BACKEND
        assert validate_args(args) == []

    def test_flags_override_environment(self, env_file, monkeypatch):
        monkeypatch.setenv("QAB_MAX_PENDING_DEALS", "7")
        args = create_parser().parse_args([
            "--env-file", env_file,
            "--standalone",
            "--cmd-mode",
            "--size-preset", "small",
            "--max-pending", "3",
            "--deal-timeout-hours", "12",
            "--retrieval-timeout", "600",
            "--refresh-asks",
            "--single-cycle",
            "--log-level", "DEBUG",
        ])

        config = build_config(args)

        assert config.mode is ProbeMode.STANDALONE
        assert config.engine.backend.standalone is True
        assert config.engine.node.cmd_mode is True
        assert config.engine.test_file.size == FILE_SIZE_PRESETS["small"]
        assert config.engine.admission.max_pending == 3
        assert config.engine.timeout.deal_timeout_hours == 12
        assert config.engine.timeout.retrieval_timeout_seconds == 600
        assert config.engine.refresh_asks is True
        assert config.single_cycle is True
        assert config.log_level == "DEBUG"
        assert config.validate() == []

    def test_size_and_preset_are_exclusive(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--size", "100", "--size-preset", "large"])

    @pytest.mark.parametrize("argv", [
        ["--size", "0"],
        ["--max-pending", "0"],
        ["--deal-timeout-hours", "-1"],
        ["--retrieval-timeout", "0"],
    ])
    def test_invalid_values(self, argv):
        args = create_parser().parse_args(argv)
        assert len(validate_args(args)) == 1


class TestMain:

    def test_show_phases(self, capsys):
        assert main(["--show-phases"]) == 0
        out = capsys.readouterr().out
        assert "refresh_providers" in out
        assert "verify_retrievals" in out

    def test_invalid_args_exit_code(self, capsys):
        assert main(["--max-pending", "0"]) == 1
        assert "--max-pending must be at least 1" in capsys.readouterr().err

    def test_show_phases_order(self, capsys):
        show_phases(refresh_asks=False)
        out = capsys.readouterr().out
        assert out.index("propose_deals") < out.index("poll_deals") < out.index("verify_retrievals")
        assert "refresh_asks" not in out
