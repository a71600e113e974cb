# tests/core/test_config.py
"""Tests for configuration schema and loading."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError


def _write(tmp_path: Path, config: dict) -> Path:
    config_file = tmp_path / "settings.yaml"
    config_file.write_text(yaml.dump(config))
    return config_file


class TestFanoutSettings:
    """Schema defaults and cross-field validation."""

    def test_defaults(self) -> None:
        from billing_fanout.core.config import MIB, FanoutSettings

        settings = FanoutSettings()

        assert settings.event_bus.name == "AnyCompany"
        assert settings.event_bus.source == "com.anycompany"
        assert settings.archiver.flush_interval_seconds == 60.0
        assert settings.archiver.flush_size_bytes == 64 * MIB
        assert settings.archiver.backup_flush_size_bytes == 1 * MIB
        assert settings.catalog.amount_type == "decimal(38,2)"
        assert settings.workflow.state_machine_name == "TransactionProcess"
        assert settings.destinations.error is None

    def test_frozen(self) -> None:
        from billing_fanout.core.config import FanoutSettings

        settings = FanoutSettings()

        with pytest.raises(ValidationError):
            settings.archiver = settings.archiver  # type: ignore[misc]

    def test_backup_threshold_cannot_exceed_primary(self) -> None:
        from billing_fanout.core.config import ArchiverSettings, FanoutSettings

        with pytest.raises(ValidationError, match="backup_flush_size_bytes"):
            FanoutSettings(archiver=ArchiverSettings(flush_size_bytes=1000, backup_flush_size_bytes=2000))

    def test_filesystem_destination_requires_path(self) -> None:
        from billing_fanout.core.config import DestinationSettings

        with pytest.raises(ValidationError, match="path is required"):
            DestinationSettings(kind="filesystem")

    def test_sql_store_requires_url(self) -> None:
        from billing_fanout.core.config import StoreSettings

        with pytest.raises(ValidationError, match="url is required"):
            StoreSettings(kind="sql")

    def test_http_publisher_requires_endpoint(self) -> None:
        from billing_fanout.core.config import PublisherSettings

        with pytest.raises(ValidationError, match="endpoint is required"):
            PublisherSettings(kind="http")

    @pytest.mark.parametrize("field", ["flush_interval_seconds", "flush_size_bytes", "max_pending_records"])
    def test_archiver_limits_must_be_positive(self, field: str) -> None:
        from billing_fanout.core.config import ArchiverSettings

        with pytest.raises(ValidationError):
            ArchiverSettings(**{field: 0})

    @pytest.mark.parametrize("amount_type", ["timestamp", "decimal(38)", "DECIMAL(10,2)", ""])
    def test_unsupported_amount_type_rejected(self, amount_type: str) -> None:
        from billing_fanout.core.config import CatalogSettings

        with pytest.raises(ValidationError, match="Unsupported column type"):
            CatalogSettings(amount_type=amount_type)

    @pytest.mark.parametrize("amount_type", ["double", "string", "decimal(10,4)", "decimal(38, 2)"])
    def test_supported_amount_types(self, amount_type: str) -> None:
        from billing_fanout.core.config import CatalogSettings

        assert CatalogSettings(amount_type=amount_type).amount_type == amount_type


class TestLoadSettings:
    """Loading from YAML with environment overrides."""

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        from billing_fanout.core.config import load_settings

        config_file = _write(
            tmp_path,
            {
                "archiver": {"flush_interval_seconds": 5, "flush_size_bytes": 4096, "backup_flush_size_bytes": 1024},
                "destinations": {
                    "primary": {"kind": "filesystem", "path": str(tmp_path / "processed")},
                    "backup": {"kind": "memory"},
                },
                "workflow": {"max_workers": 2, "retry": {"max_attempts": 5}},
            },
        )

        settings = load_settings(config_file)

        assert settings.archiver.flush_interval_seconds == 5
        assert settings.archiver.flush_size_bytes == 4096
        assert settings.destinations.primary.path == tmp_path / "processed"
        assert settings.destinations.backup.kind == "memory"
        assert settings.workflow.retry.max_attempts == 5

    def test_env_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        from billing_fanout.core.config import load_settings

        config_file = _write(tmp_path, {"archiver": {"table_name": "transactions"}})
        # Environment variable should override YAML
        monkeypatch.setenv("BILLING_FANOUT_ARCHIVER__TABLE_NAME", "payments")

        settings = load_settings(config_file)

        assert settings.archiver.table_name == "payments"

    def test_expands_env_var_with_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        from billing_fanout.core.config import load_settings

        monkeypatch.setenv("PUBLISH_ENDPOINT", "https://bus.example.test/events")
        monkeypatch.delenv("BILLING_DB_URL", raising=False)
        config_file = _write(
            tmp_path,
            {
                "workflow": {
                    "publisher": {"kind": "http", "endpoint": "${PUBLISH_ENDPOINT}"},
                    "store": {"kind": "sql", "url": "${BILLING_DB_URL:-sqlite:///fallback.db}"},
                }
            },
        )

        settings = load_settings(config_file)

        assert settings.workflow.publisher.endpoint == "https://bus.example.test/events"
        assert settings.workflow.store.url == "sqlite:///fallback.db"

    def test_missing_file(self, tmp_path: Path) -> None:
        from billing_fanout.core.config import load_settings

        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml")

    def test_invalid_values_raise_validation_error(self, tmp_path: Path) -> None:
        from billing_fanout.core.config import load_settings

        config_file = _write(tmp_path, {"workflow": {"max_workers": -1}})

        with pytest.raises(ValidationError):
            load_settings(config_file)


class TestResolveConfig:
    def test_json_ready(self) -> None:
        from billing_fanout.core.config import FanoutSettings, resolve_config

        resolved = resolve_config(FanoutSettings())

        assert resolved["archiver"]["flush_size_bytes"] == 64 * 1024 * 1024
        assert resolved["destinations"]["primary"] == {"kind": "memory", "path": None}
