class SqlowserError(Exception):
    """Base class for errors surfaced to the session."""


class DatabaseConnectionError(SqlowserError):
    """The database file is missing, unreadable or not SQLite. Fatal."""


class QueryError(SqlowserError):
    """SQLite rejected a statement."""


class PolicyError(SqlowserError):
    """A mutating action was attempted under the read-only policy."""


class QueryTimeoutError(SqlowserError):
    """No response arrived within the configured ceiling."""


class LayoutError(SqlowserError):
    """A foreign key could not be placed in the relationship graph."""


class WriteInProgressError(SqlowserError):
    """Another write has not finished yet."""


class ExportError(SqlowserError):
    """Rows could not be written to the export target."""
