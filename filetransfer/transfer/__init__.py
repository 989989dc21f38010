"""
Transfer Module - Single File Send/Receive

Length-prefixed metadata header followed by the raw file bytes over TCP.
"""

from .errors import (
    TransferError,
    FileAccessError,
    PeerConnectionError,
    BindError,
    ProtocolError,
    StreamIOError,
    TransferAborted,
)
from .progress import TransferDirection, TransferPhase, TransferState
from .protocol import TransferMetadata, encode_header, decode_header, read_header
from .sender import FileSender, send_file
from .receiver import FileReceiver, receive_file

__all__ = [
    'TransferError',
    'FileAccessError',
    'PeerConnectionError',
    'BindError',
    'ProtocolError',
    'StreamIOError',
    'TransferAborted',
    'TransferDirection',
    'TransferPhase',
    'TransferState',
    'TransferMetadata',
    'encode_header',
    'decode_header',
    'read_header',
    'FileSender',
    'send_file',
    'FileReceiver',
    'receive_file',
]
