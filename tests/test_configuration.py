"""
Tests for layered configuration loading.
"""

import pytest
from omegaconf.errors import ConfigKeyError

from pdf_toolkit_backend.configuration import load_settings, settings_to_dict


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings(environ={})

        assert settings.retention.file_ttl_hours == 24
        assert settings.retention.job_ttl_hours == 48
        assert settings.jobs.wait_for_completion is True
        assert list(settings.converters.office.candidates)[0] == "soffice"
        assert list(settings.converters.compression.candidates)[0] == "gs"
        assert settings.storage.database is None

    def test_environment_overrides(self):
        settings = load_settings(
            environ={
                "PDF_TOOLKIT_DATA_DIR": "/srv/pdf",
                "PDF_TOOLKIT_JOB_WORKERS": "8",
                "PDF_TOOLKIT_WAIT_FOR_JOBS": "no",
                "PDF_TOOLKIT_OFFICE_CANDIDATES": "libreoffice, soffice ,",
                "PDF_TOOLKIT_TOOL_TIMEOUT": "60",
                "PDF_TOOLKIT_LOG_LEVEL": "debug",
            }
        )

        assert settings.storage.root == "/srv/pdf"
        assert settings.jobs.max_workers == 8
        assert settings.jobs.wait_for_completion is False
        assert list(settings.converters.office.candidates) == ["libreoffice", "soffice"]
        assert settings.converters.timeout_seconds == 60
        assert settings.logging.level == "debug"

    def test_blank_environment_values_are_ignored(self):
        settings = load_settings(environ={"PDF_TOOLKIT_JOB_WORKERS": "  "})
        assert settings.jobs.max_workers == 2

    def test_config_file_then_env_then_overrides(self, tmp_path):
        config_file = tmp_path / "toolkit.yaml"
        config_file.write_text(
            "retention:\n  file_ttl_hours: 6\njobs:\n  max_workers: 4\nuploads:\n  max_files: 3\n",
            encoding="utf-8",
        )

        settings = load_settings(
            overrides={"uploads": {"max_files": 5}},
            environ={"PDF_TOOLKIT_CONFIG": str(config_file), "PDF_TOOLKIT_JOB_WORKERS": "6"},
        )

        assert settings.retention.file_ttl_hours == 6
        assert settings.jobs.max_workers == 6
        assert settings.uploads.max_files == 5

    def test_unknown_key_is_rejected(self):
        with pytest.raises(ConfigKeyError):
            load_settings(overrides={"jobs": {"max_wrokers": 3}}, environ={})

    def test_defaults_are_not_shared(self):
        first = load_settings(overrides={"uploads": {"max_files": 1}}, environ={})
        second = load_settings(environ={})
        assert first.uploads.max_files == 1
        assert second.uploads.max_files == 10

    def test_settings_to_dict(self):
        data = settings_to_dict(load_settings(environ={}))
        assert isinstance(data, dict)
        assert data["converters"]["compression"]["pdf_settings"] == "/ebook"
