"""Outbound response envelope formatting."""

from homie.formatting.formatter import ResponseFormatter
from homie.formatting.models import StandardResponse

__all__ = ["ResponseFormatter", "StandardResponse"]
