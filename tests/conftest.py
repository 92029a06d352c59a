"""
Shared test fixtures for the coverage scheduler tests

Provides a fresh store, recording collaborators, settings without any
model key, and a fully wired CoverageScheduler.
"""
import pytest

from scheduler import CoverageScheduler, CoverageStore, LoggingNotifier, SchedulerSettings, StaticDirectory
from tests.factories import at, reset_sequences


@pytest.fixture(autouse=True)
def _reset_factory_sequences():
    reset_sequences()
    yield


@pytest.fixture
def now():
    """08:00 on the fixed test day."""
    return at(8)


@pytest.fixture
def store():
    return CoverageStore()


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def directory():
    d = StaticDirectory()
    d.add("editor", "user_editor_news", "News")
    d.add("editor", "user_editor_sports", "Sports")
    d.add("senior_editor", "user_senior_news", "News")
    d.add("department_head", "user_head_news", "News")
    d.add("admin", "user_admin")
    return d


@pytest.fixture
def settings():
    return SchedulerSettings(google_api_key=None)


@pytest.fixture
def scheduler(store, notifier, directory, settings):
    return CoverageScheduler(store, notifier, directory, settings)
