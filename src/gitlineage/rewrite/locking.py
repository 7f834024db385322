"""Repository-scoped advisory lock for history mutations."""

import fcntl
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from gitlineage.git.base import UnsafeOperationError


@contextmanager
def repository_lock(lock_path: Path) -> Generator[None, None, None]:
    """Hold an exclusive, non-blocking flock on `lock_path`.

    Raises:
        UnsafeOperationError: If another mutation already holds the lock
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a") as handle:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            raise UnsafeOperationError(
                f"Another history mutation is in progress ({lock_path})"
            ) from e
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
