"""Backend and robot bridge channel boundaries."""

from .backend import BackendChannel
from .channel import ManagedChannel, WebSocketConnection, connect_websocket
from .peripheral import PeripheralChannel, robot_url

__all__ = [
    "BackendChannel",
    "ManagedChannel",
    "PeripheralChannel",
    "WebSocketConnection",
    "connect_websocket",
    "robot_url",
]
