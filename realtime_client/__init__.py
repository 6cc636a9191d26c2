from realtime_client.client import LockOutcome, RealtimeClient
from realtime_client.messages import MessageDecodeError, MessageKind, RealtimeMessage, decode_message, iter_sse_data
from realtime_client.state import LockState

__all__ = [
    "LockOutcome",
    "LockState",
    "MessageDecodeError",
    "MessageKind",
    "RealtimeClient",
    "RealtimeMessage",
    "decode_message",
    "iter_sse_data",
]
