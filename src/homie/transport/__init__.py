"""Multi-transport dispatch of manifest endpoint definitions."""

from homie.transport.dispatcher import TransportDispatcher
from homie.transport.guards import validate_control_socket_request, validate_remote_command
from homie.transport.interpolate import interpolate, interpolate_mapping

__all__ = [
    "TransportDispatcher",
    "interpolate",
    "interpolate_mapping",
    "validate_control_socket_request",
    "validate_remote_command",
]
