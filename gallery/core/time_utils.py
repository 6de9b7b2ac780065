import os
from datetime import datetime, timezone
from typing import Union


def utc_now() -> datetime:
    """Return a naive UTC timestamp without using deprecated utcnow()."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def file_mtime(path: Union[str, os.PathLike]) -> datetime:
    """Modification time of ``path`` as a naive UTC timestamp, now if unreadable."""
    try:
        ts = os.stat(path).st_mtime
    except OSError:
        return utc_now()
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)
