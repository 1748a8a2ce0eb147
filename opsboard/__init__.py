"""OpsBoard — call-center status and sales ranking backend."""

__version__ = "1.0.0"
