"""Domain exceptions shared by the refresh pipeline."""


class OpsboardError(Exception):
    """Base class for every error raised by opsboard services."""


class DatabaseUnavailable(OpsboardError):
    """The database could not be reached or the query failed."""


class QueryTimeout(DatabaseUnavailable):
    """A database call exceeded ``DB_QUERY_TIMEOUT_S``."""


class UpstreamError(OpsboardError):
    """No status lookup of a sync run succeeded (network, 5xx, timeout)."""
