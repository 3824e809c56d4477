"""Infrastructure layer exports."""

from .http import ResidualsApiClient
from .upstream import InMemoryResidualsUpstream, ResidualsUpstream, configure_upstream, get_upstream

__all__ = [
    "InMemoryResidualsUpstream",
    "ResidualsApiClient",
    "ResidualsUpstream",
    "configure_upstream",
    "get_upstream",
]
