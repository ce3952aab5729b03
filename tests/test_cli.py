# ==============================================
# Tests for the command line entry point
# ==============================================
#
# MySQL, the session store and the record API are swapped for
# the in-memory fakes, so main() runs end to end without servers.
# ==============================================

import pytest

from tablebridge import cli
from tablebridge.orchestrator import ImportOrchestrator

from tests.conftest import InMemoryStorage


class ContextStorage(InMemoryStorage):
    """InMemoryStorage with the MySQLClient constructor and context manager."""

    def __init__(self, **kwargs):
        super().__init__()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture
def wired(monkeypatch, source, store, projects_and_tasks):
    monkeypatch.setattr(cli, "MySQLClient", ContextStorage)
    monkeypatch.setattr(cli, "build_store", lambda config: store)
    monkeypatch.setattr(cli, "build_source", lambda config: source)
    return store


class TestRetryCommand:

    def test_table_outside_session_exits_cleanly(self, wired, source, registry):
        orchestrator = ImportOrchestrator(source, InMemoryStorage(), wired, registry)
        session_id = orchestrator.start_import("alice", ["Projects"], "upsert")

        assert cli.main(["retry", session_id, "Nope"]) == 1

    def test_unknown_session_exits_cleanly(self, wired):
        assert cli.main(["retry", "missing-session", "Projects"]) == 1
