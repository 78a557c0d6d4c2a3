"""
Local persistence of the store's snapshot.

The snapshot lives in a single JSON file. Timestamps are written as
ISO-8601 strings and parsed back into datetimes on load. Loading never
fails: a missing, empty or corrupt file yields an empty snapshot, a
collection that is not a list is treated as empty, and a record that
does not validate is skipped.
"""

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from shiftbook.exceptions import InvalidBackupError
from shiftbook.models import AppSnapshot, Hospital, Shift, UserProfile

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def write_text_atomically(path: Path, text: str) -> None:
    """Write ``text`` to a sibling temp file, then move it over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


def load_records(model: type[M], records: Any) -> list[M]:
    loaded = []
    for record in _as_list(records):
        try:
            loaded.append(model.model_validate(record))
        except ValidationError as e:
            logger.warning(f"Skipping malformed {model.__name__} record: {e}")
    return loaded


def snapshot_from_dict(raw: Mapping[str, Any]) -> AppSnapshot:
    """Build a snapshot from camelCase JSON data, normalizing what is missing."""
    profile = UserProfile()
    if isinstance(raw.get("userProfile"), dict):
        try:
            profile = UserProfile.model_validate(raw["userProfile"])
        except ValidationError as e:
            logger.warning(f"Ignoring malformed user profile: {e}")

    return AppSnapshot(
        user_profile=profile,
        notifications_enabled=raw.get("notificationsEnabled") is True,
        hospitals=load_records(Hospital, raw.get("hospitals")),
        shifts=load_records(Shift, raw.get("shifts")),
    )


def parse_backup(raw: Any) -> AppSnapshot:
    """
    Turn the content of a backup file into a snapshot, rejecting it unless
    it has a profile object and hospitals and shifts lists.
    """
    if not (
        isinstance(raw, Mapping)
        and isinstance(raw.get("userProfile"), dict)
        and isinstance(raw.get("hospitals"), list)
        and isinstance(raw.get("shifts"), list)
    ):
        raise InvalidBackupError(
            "Backup must contain userProfile, hospitals and shifts"
        )
    return snapshot_from_dict(raw)


class LocalPersistence:
    """Reads and writes the snapshot slot at ``path``."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _read(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            text = self.path.read_text(encoding="utf-8").strip()
            if not text:
                return None
            raw = json.loads(text)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read snapshot at {self.path}: {e}")
            return None
        if not isinstance(raw, dict):
            logger.warning(f"Snapshot at {self.path} is not an object, ignoring it")
            return None
        # Older builds wrapped the payload as {"state": {...}, "version": n}
        if isinstance(raw.get("state"), dict):
            raw = raw["state"]
        return raw

    def load(self) -> AppSnapshot:
        raw = self._read()
        if raw is None:
            logger.info(f"No snapshot at {self.path}, starting empty")
            return AppSnapshot()
        return snapshot_from_dict(raw)

    def save(self, snapshot: AppSnapshot) -> None:
        write_text_atomically(
            self.path, snapshot.model_dump_json(by_alias=True, indent=2)
        )
