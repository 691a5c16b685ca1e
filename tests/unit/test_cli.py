"""Tests for the watch commands."""

import asyncio
import json
import logging

import pytest
import structlog
from typer.testing import CliRunner

from progress_tracker import cli
from progress_tracker.config import Settings
from progress_tracker.store.base import Collection

runner = CliRunner()


def json_lines(output):
    """Snapshots printed with --json; anything else on the stream is ignored."""
    return [json.loads(line) for line in output.splitlines() if line.startswith(("{", "["))]


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def cli_settings(monkeypatch):
    settings = Settings(_env_file=None, store_backend="redis", redis_url="redis://tracker:6379")
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    return settings


@pytest.fixture
def seeded(store, cli_settings, monkeypatch):
    """Route the CLI to the test's in-memory store. Logging is configured for real."""
    monkeypatch.setattr(cli, "create_store", lambda _settings: store)
    return store


async def seed(store):
    project = await store.create(
        Collection.PROJECTS,
        {"name": "Website", "ownerId": "owner-a", "publicId": "abcdefghij0123456789klmn"},
    )
    await store.create(
        Collection.TASKS, {"projectId": project.id, "title": "Design", "status": "completed"}
    )
    await store.create(Collection.TASKS, {"projectId": project.id, "title": "Build"})
    return project


@pytest.fixture
def project(seeded):
    return asyncio.run(seed(seeded))


class TestWatchPublic:
    def test_json_output(self, project):
        result = runner.invoke(cli.app, ["watch-public", project.public_id, "--json", "--once"])

        assert result.exit_code == 0, result.output
        [detail] = [line for line in json_lines(result.stdout) if "project" in line]
        assert detail["project"]["id"] == project.id
        assert detail["progress"] == 50  # noqa: PLR2004
        assert len(detail["tasks"]) == 2  # noqa: PLR2004

    def test_table_output(self, project):
        result = runner.invoke(cli.app, ["watch-public", project.public_id, "--once"])

        assert result.exit_code == 0, result.output
        assert "Website" in result.output
        assert "Design" in result.output

    def test_unknown_public_id(self, project):
        result = runner.invoke(cli.app, ["watch-public", "unknownpublicid000000000"])

        assert result.exit_code == 1
        assert "not found" in result.output.lower()


class TestWatchOwner:
    def test_json_output(self, project):
        result = runner.invoke(cli.app, ["watch-owner", "owner-a", "--json", "--once"])

        assert result.exit_code == 0, result.output
        [[row]] = [line for line in json_lines(result.stdout) if isinstance(line, list)]
        assert row["project"]["name"] == "Website"
        assert row["progress"] == 50  # noqa: PLR2004
        assert row["live"] is True

    def test_store_unavailable(self, seeded):
        seeded.set_unavailable()

        result = runner.invoke(cli.app, ["watch-owner", "owner-a"])

        assert result.exit_code == 2  # noqa: PLR2004


class TestConfiguration:
    def test_in_process_store_is_refused(self, monkeypatch):
        monkeypatch.setattr(cli, "get_settings", lambda: Settings(_env_file=None))
        monkeypatch.setattr(cli, "create_store", pytest.fail)

        result = runner.invoke(cli.app, ["watch-owner", "owner-a"])

        assert result.exit_code == 3  # noqa: PLR2004
        assert "STORE_BACKEND=redis" in result.output

    def test_redis_url_option_selects_redis(self, store, monkeypatch):
        monkeypatch.setattr(cli, "get_settings", lambda: Settings(_env_file=None))
        used = []

        def recording_store(settings):
            used.append(settings)
            return store

        monkeypatch.setattr(cli, "create_store", recording_store)
        asyncio.run(seed(store))

        result = runner.invoke(
            cli.app, ["watch-owner", "owner-a", "--once", "--redis-url", "redis://other:6379"]
        )

        assert result.exit_code == 0, result.output
        [settings] = used
        assert (settings.store_backend, settings.redis_url) == ("redis", "redis://other:6379")

    def test_invalid_configuration_exits_cleanly(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "redis")
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.setattr(cli, "get_settings", lambda: Settings(_env_file=None))

        result = runner.invoke(cli.app, ["watch-public", "abcdefghij0123456789klmn"])

        assert result.exit_code == 3  # noqa: PLR2004
        assert "Invalid configuration" in result.output
        assert "REDIS_URL" in result.output
