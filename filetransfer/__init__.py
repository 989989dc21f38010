"""
File Transfer - send and receive single files over TCP

A sender writes a length-prefixed JSON metadata header followed by the
raw file bytes; a receiver accepts exactly one connection and writes the
file into its save directory.
"""

from .transfer import FileReceiver, FileSender, TransferError, TransferState
from .service import TransferHandle, TransferService
from .storage import FileTransferRecord, TransferHistory

__version__ = '1.0.0'

__all__ = [
    'FileSender',
    'FileReceiver',
    'TransferError',
    'TransferState',
    'TransferService',
    'TransferHandle',
    'TransferHistory',
    'FileTransferRecord',
]
