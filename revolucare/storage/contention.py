"""Classification of database errors raised by competing writers."""
from sqlalchemy.exc import OperationalError

# SQLite reports lock contention, PostgreSQL reports serialization and deadlock failures.
_CONTENTION_MARKERS = (
    "database is locked",
    "could not serialize access",
    "deadlock detected",
)


def is_write_contention(error: OperationalError) -> bool:
    """True when the error means another transaction holds the rows or lock."""
    message = str(error.orig if getattr(error, "orig", None) is not None else error).lower()
    return any(marker in message for marker in _CONTENTION_MARKERS)
