class RetailError(Exception):
    """Base class for failures raised by the retail core."""


class NotFound(RetailError):
    """The addressed record, blob or file does not exist."""


class InvalidOperation(RetailError):
    """A precondition was violated: bad ids, no stock, wrong order status."""


class PreconditionFailed(RetailError):
    """A conditional write lost against a concurrent writer (etag mismatch)."""
