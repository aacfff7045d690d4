"""web_enhanced verb surface."""

from .dispatcher import CommandDispatcher, normalize_verb, to_adapter_error
from .requests import parse_request

__all__ = [
    "CommandDispatcher",
    "normalize_verb",
    "to_adapter_error",
    "parse_request",
]
