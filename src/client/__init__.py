"""Client for JSON-RPC over a push stream with a POST side channel."""

from src.client.channel import PushChannelClient
from src.client.pending import PendingRequestTable
from src.client.state import ChannelState, ConnectionState

__all__ = [
    "PushChannelClient",
    "PendingRequestTable",
    "ChannelState",
    "ConnectionState",
]
