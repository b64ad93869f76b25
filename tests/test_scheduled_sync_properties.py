"""Tests for the scheduled synchronization script."""

import importlib.util
from pathlib import Path
from unittest.mock import patch
from uuid import UUID

import pytest
import structlog
import yaml

from feedsync.models import AppConfig
from feedsync.models.descriptor import TIMESTAMP_FIELD
from feedsync.storage.memory import InMemoryFeedSource, InMemorySyncTarget
from feedsync.sync.errors import ConfigurationError
from feedsync.sync.models import SyncResult
from feedsync.sync.registry import ModelRegistry
from feedsync.sync.sync_coordinator import SyncCoordinator

log = structlog.stdlib.get_logger()

SCRIPT = Path(__file__).parent.parent / "scripts" / "scheduled_sync.py"

spec = importlib.util.spec_from_file_location("scheduled_sync", SCRIPT)
scheduled_sync = importlib.util.module_from_spec(spec)
spec.loader.exec_module(scheduled_sync)

MODELS = [
    {"name": "Item", "entity_set": "Logistics/Items", "supports_sync_feed": True},
    {"name": "Broken", "entity_set": "Broken/Things", "supports_sync_feed": True},
]


class ClosableFeed(InMemoryFeedSource):
    """In-memory feed standing in for the HTTP client."""

    def __init__(self) -> None:
        super().__init__(page_size=2)
        self.closed = False

    def close(self) -> None:
        self.closed = True


def seeded(feed: InMemoryFeedSource) -> InMemoryFeedSource:
    feed.add_records(
        "Logistics/Items",
        [{"ID": str(UUID(int=n + 1)), TIMESTAMP_FIELD: n + 1, "Code": f"I{n}"} for n in range(3)],
    )
    # No identifier: rejected during deduplication
    feed.add_records("Broken/Things", [{TIMESTAMP_FIELD: 1}])
    return feed


def app_config(concurrent: bool) -> AppConfig:
    return AppConfig(
        feed={"base_url": "https://feed.example.com/api", "auth_token": "token"},
        models=MODELS,
        sync={"fields": {"Item": ["Code"]}, "concurrent_models": concurrent},
    )


class TestRunModels:
    """Every selected model gets an outcome, failures included."""

    @pytest.mark.parametrize("concurrent", [False, True])
    def test_outcomes_in_model_order(self, concurrent: bool) -> None:
        config = app_config(concurrent)
        coordinator = SyncCoordinator(seeded(InMemoryFeedSource()), ModelRegistry(config.models))
        target = InMemorySyncTarget()

        outcomes = scheduled_sync.run_models(coordinator, target, config, ["Item", "Broken"])

        assert isinstance(outcomes[0], SyncResult)
        assert outcomes[0].records_upserted == 3
        assert isinstance(outcomes[1], ConfigurationError)
        assert all(set(r) == {"ID", TIMESTAMP_FIELD, "Code"} for r in target.records("Item"))


class TestPerformSync:
    """The script wires configuration, feed and SQL target together."""

    def write_config(self, tmp_path: Path) -> str:
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "feed": {"base_url": "https://feed.example.com/api", "auth_token": "token"},
                    "target": {"database_url": f"sqlite:///{tmp_path / 'feedsync.db'}"},
                    "models": MODELS,
                    "logging": {"log_level": "WARNING", "json_logs": True},
                }
            )
        )
        return str(path)

    def test_stats_report_each_model(self, tmp_path: Path) -> None:
        feed = seeded(ClosableFeed())

        with patch.object(scheduled_sync, "FeedClient", return_value=feed):
            stats = scheduled_sync.perform_sync(config_path=self.write_config(tmp_path))

        assert not stats["success"]
        assert [r["success"] for r in stats["results"]] == [True, False]
        assert stats["results"][0]["records_read"] == 3
        assert stats["results"][0]["total_changes"] == 3
        assert stats["results"][1]["model_type"] == "Broken"
        assert feed.closed

    def test_selected_models_only(self, tmp_path: Path) -> None:
        feed = seeded(ClosableFeed())

        with patch.object(scheduled_sync, "FeedClient", return_value=feed):
            stats = scheduled_sync.perform_sync(
                config_path=self.write_config(tmp_path), models=["Item"]
            )

        assert stats["success"]
        assert [r["model_type"] for r in stats["results"]] == ["Item"]

    def test_unknown_model_fails_the_run(self, tmp_path: Path) -> None:
        with patch.object(scheduled_sync, "FeedClient") as feed_client:
            stats = scheduled_sync.perform_sync(
                config_path=self.write_config(tmp_path), models=["Nope"]
            )

        assert not stats["success"]
        assert "Nope" in stats["error"]
        feed_client.assert_not_called()

    def test_main_exit_code(self, tmp_path: Path) -> None:
        feed = seeded(ClosableFeed())
        argv = ["scheduled_sync.py", "--config", self.write_config(tmp_path), "--model", "Item"]

        with patch.object(scheduled_sync, "FeedClient", return_value=feed), patch("sys.argv", argv):
            with pytest.raises(SystemExit) as exc_info:
                scheduled_sync.main()

        assert exc_info.value.code == 0
