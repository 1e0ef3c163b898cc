"""Tests for configuration loading."""

import os
from pathlib import Path

import pytest

from exequatur.config import REGISTRY_URL, VerifierConfig
from exequatur.env import load_env


class TestVerifierConfig:
    def test_defaults(self):
        config = VerifierConfig()
        assert config.source == "interactive"
        assert config.registry_url == REGISTRY_URL
        assert config.threshold == 0.6
        assert config.suggestion_threshold == 0.5
        assert config.page_load_timeout == 45.0
        assert config.overall_timeout == 75.0
        assert config.log_level == "INFO"

    def test_debug_level(self):
        assert VerifierConfig(debug=True).log_level == "DEBUG"

    def test_tls_verified_unless_host_listed(self):
        config = VerifierConfig(insecure_hosts=("Legacy.SNS.gob.do",))
        assert config.verify_tls("https://sns.gob.do/consulta")
        assert not config.verify_tls("https://legacy.sns.gob.do/Consulta.aspx")

    @pytest.mark.parametrize("kwargs", [
        {"source": "api"},
        {"threshold": 1.2},
        {"threshold": 0.4},
        {"http_timeout": 0},
        {"settle_delay": -1},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            VerifierConfig(**kwargs)


class TestFromEnv:
    def test_reads_prefixed_variables(self):
        config = VerifierConfig.from_env({
            "EXEQUATUR_SOURCE": "replay",
            "EXEQUATUR_THRESHOLD": "0.7",
            "EXEQUATUR_SURFACE_SUGGESTIONS": "no",
            "EXEQUATUR_INSECURE_HOSTS": "a.gob.do, b.gob.do",
            "EXEQUATUR_LOG_DIR": "/tmp/exequatur-logs",
            "EXEQUATUR_SEARCH_FIELD": "txtBuscar",
        })
        assert config.source == "replay"
        assert config.threshold == 0.7
        assert config.surface_suggestions is False
        assert config.insecure_hosts == ("a.gob.do", "b.gob.do")
        assert config.log_dir == Path("/tmp/exequatur-logs")
        assert config.search_field == "txtBuscar"

    def test_frame_hosts(self):
        assert VerifierConfig.from_env({}).frame_hosts == ("gob.do",)
        config = VerifierConfig.from_env({"EXEQUATUR_FRAME_HOSTS": "SNS.gob.do, .example.org"})
        assert config.frame_hosts == ("sns.gob.do", "example.org")

    def test_blank_values_ignored(self):
        assert VerifierConfig.from_env({"EXEQUATUR_SOURCE": "  "}).source == "interactive"

    def test_overrides_win_and_none_is_skipped(self):
        config = VerifierConfig.from_env({"EXEQUATUR_SOURCE": "replay"}, source=None, threshold=0.8)
        assert config.source == "replay"
        assert config.threshold == 0.8

    @pytest.mark.parametrize("env", [
        {"EXEQUATUR_THRESHOLD": "alto"},
        {"EXEQUATUR_HEADLESS": "quizas"},
    ])
    def test_malformed_values(self, env):
        with pytest.raises(ValueError, match="EXEQUATUR_"):
            VerifierConfig.from_env(env)


class TestLoadEnv:
    def test_dotenv_does_not_override_process(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("EXEQUATUR_SOURCE=replay\nEXEQUATUR_DEBUG=true\n")
        monkeypatch.setenv("EXEQUATUR_SOURCE", "interactive")
        monkeypatch.delenv("EXEQUATUR_DEBUG", raising=False)

        load_env(env_file)

        assert os.environ["EXEQUATUR_SOURCE"] == "interactive"
        assert os.environ["EXEQUATUR_DEBUG"] == "true"

    def test_missing_file_is_fine(self, tmp_path):
        load_env(tmp_path / "absent.env")
