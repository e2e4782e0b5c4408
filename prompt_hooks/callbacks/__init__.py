"""
LiteLLM custom callbacks that run the extension pipeline inside the proxy.
"""

from .extension_hooks import ExtensionPipelineCallback

__all__ = [
    "ExtensionPipelineCallback",
]
