"""
Storage Module - Transfer History

Uses SQLite for the log of completed transfers.
"""

from .database import FileTransferRecord, TransferHistory, init_history

__all__ = ['FileTransferRecord', 'TransferHistory', 'init_history']
