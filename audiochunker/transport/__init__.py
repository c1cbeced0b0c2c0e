"""Transports delivering segments to the remote collector."""

from .base import AbstractTransport, FinalizeRequest, participant_field
from .http_transport import HttpTransport, parse_response_body

__all__ = [
    "AbstractTransport",
    "FinalizeRequest",
    "participant_field",
    "HttpTransport",
    "parse_response_body",
]
