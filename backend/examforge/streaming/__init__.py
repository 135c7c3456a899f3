"""
Progress Stream Transport
══════════════════════════

  sse.py     Wire format: frame encoder (server) + incremental SSEParser (client)
  client.py  ProgressStreamConsumer: one live httpx subscription per consumer,
             terminal-event tracking, TransportFailed reporting
"""

from examforge.streaming.client import ProgressStreamConsumer
from examforge.streaming.sse import SSEParser, comment_frame, encode_event, keepalive_frame

__all__ = [
    "ProgressStreamConsumer",
    "SSEParser",
    "comment_frame",
    "encode_event",
    "keepalive_frame",
]
