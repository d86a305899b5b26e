"""Free-space preflight for backups."""

from __future__ import annotations

import logging
import math
import shutil
from pathlib import Path
from typing import Callable

from .errors import InsufficientSpaceError
from .filesystem import existing_ancestor

logger = logging.getLogger(__name__)

DEFAULT_HEADROOM = 1.1


def free_bytes(path: Path) -> int:
    return shutil.disk_usage(path).free


class DiskSpaceGuard:
    """Refuses a backup before anything is written if it would not fit."""

    def __init__(
        self,
        headroom: float = DEFAULT_HEADROOM,
        free_bytes: Callable[[Path], int] = free_bytes,
    ) -> None:
        if headroom < 1.0:
            raise ValueError("headroom must be at least 1.0")
        self.headroom = headroom
        self._free_bytes = free_bytes

    def required_bytes(self, estimated_bytes: int) -> int:
        return math.ceil(estimated_bytes * self.headroom)

    def check(self, directory: Path, estimated_bytes: int) -> None:
        """Raise ``InsufficientSpaceError`` if ``directory``'s filesystem lacks room.

        ``directory`` is the backup directory. It may not exist yet, in which
        case the nearest existing ancestor is probed since that is where it
        will be created.
        """

        probe = existing_ancestor(directory)
        required = self.required_bytes(estimated_bytes)
        available = self._free_bytes(probe)
        logger.debug("Disk check on %s: required=%d available=%d", probe, required, available)
        if available < required:
            raise InsufficientSpaceError(directory, required, available)
