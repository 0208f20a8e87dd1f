"""Value types shared across the package."""

from resilient_llm.types.response import LlmResponse, RequestContext, SendOptions

__all__ = [
    "LlmResponse",
    "RequestContext",
    "SendOptions",
]
