"""Route-table snapshot persistence.

A snapshot is the JSON form of ``RouteTable.serialize()``. Writes go to a
temporary file in the same directory and are moved into place with
``os.replace``, so a reader never sees a half-written snapshot.
"""

import json
import logging
import os
import tempfile
from pathlib import Path

from switchyard.errors import ConfigurationError
from switchyard.routing.table import RouteTable

logger = logging.getLogger("switchyard.cache")


class RouteCache:
    """Loads and stores route-table snapshots at a fixed path."""

    __slots__ = ("path",)

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> RouteTable | None:
        """Return the cached table, or ``None`` if there is no usable snapshot.

        A corrupt or outdated snapshot is logged and treated as a miss.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No route snapshot at %s", self.path)
            return None

        try:
            table = RouteTable.deserialize(json.loads(raw))
        except (json.JSONDecodeError, ConfigurationError) as exc:
            logger.warning("Ignoring unreadable route snapshot %s: %s", self.path, exc)
            return None

        logger.info("Loaded %d routes from snapshot %s", len(table), self.path)
        return table

    def save(self, table: RouteTable) -> None:
        """Write *table* to the snapshot path atomically.

        Raises ``ConfigurationError`` if the table holds handlers that
        cannot be stored by import string.
        """
        payload = json.dumps(table.serialize(), indent=2, sort_keys=True)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info("Wrote %d routes to snapshot %s", len(table), self.path)

    def clear(self) -> bool:
        """Delete the snapshot. Returns ``True`` once no snapshot remains."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return True
        except OSError as exc:
            logger.warning("Could not remove route snapshot %s: %s", self.path, exc)
            return False
        return True

    def exists(self) -> bool:
        return self.path.is_file()
