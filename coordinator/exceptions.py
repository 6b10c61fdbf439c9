"""Custom exception classes for the replication coordinator."""


class ReplicationError(Exception):
    """
    Base exception class for all replication coordinator errors.
    """
    pass


class TableNotFoundError(ReplicationError):
    """
    Raised when a table does not exist (yet).
    """

    def __init__(self, table: str):
        super().__init__(f"Table {table} does not exist")
        self.table = table


class TableServiceError(ReplicationError):
    """
    Raised when the table store fails to read or write.
    """
    pass


class MutationsRejectedError(TableServiceError):
    """
    Raised when a batch writer could not apply its buffered mutations.
    """

    def __init__(self, message: str, rejected: int = 0):
        super().__init__(message)
        self.rejected = rejected


class WorkQueueError(ReplicationError):
    """
    Raised when the coordination store backing the work queue fails.
    """
    pass


class QueuedWorkStateError(ReplicationError):
    """
    Raised when the queued work set is initialized more than once.
    """
    pass
