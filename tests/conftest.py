import pytest

from shiftbook.notifier import LocalNotifier
from shiftbook.persistence import LocalPersistence
from shiftbook.reminders import ReminderScheduler
from shiftbook.remote import RemoteSync
from shiftbook.store import ShiftStore
from tests.factories import FakeBackend


@pytest.fixture
def persistence(tmp_path) -> LocalPersistence:
    return LocalPersistence(tmp_path / "shiftbook.json")


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def notifier() -> LocalNotifier:
    return LocalNotifier()


@pytest.fixture
def store(
    persistence: LocalPersistence, backend: FakeBackend, notifier: LocalNotifier
) -> ShiftStore:
    """A store wired to a temp snapshot file, the fake backend and a local notifier."""
    return ShiftStore(
        persistence=persistence,
        remote=RemoteSync(backend),
        reminders=ReminderScheduler(notifier),
    )
