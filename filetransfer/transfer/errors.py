"""
Transfer Errors

Every failure that ends a transfer is raised as a subclass of
TransferError. None of them are retried; the sender/receiver releases
its sockets and file handles and hands the first error to the caller.
"""


class TransferError(Exception):
    """Base class for errors that terminate a transfer."""


class FileAccessError(TransferError):
    """Source file unreadable or destination file/directory unwritable."""


class PeerConnectionError(TransferError):
    """Outbound connection refused, timed out or name resolution failed."""


class BindError(TransferError):
    """Listening port is unavailable."""


class ProtocolError(TransferError):
    """Malformed or missing metadata header."""


class StreamIOError(TransferError):
    """Read/write failure on the socket or file in the middle of a transfer."""


class TransferAborted(TransferError):
    """Transfer was aborted by the caller."""
