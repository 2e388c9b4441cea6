"""Fallback wrappers for providers without native reasoning or tool channels."""

from .reasoning import extract_reasoning_wrapper, split_reasoning
from .xml_tools import extract_xml_tools_wrapper, parse_xml_tool_call

__all__ = [
    "extract_reasoning_wrapper",
    "extract_xml_tools_wrapper",
    "parse_xml_tool_call",
    "split_reasoning",
]
