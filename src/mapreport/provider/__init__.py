"""Provider loading layer.

The coordinator is the single authority over acquiring the external mapping
provider; the degradation chain supplies fallbacks, and every outcome is a
:class:`~mapreport.provider.handles.ProviderHandle`.
"""

from mapreport.provider.chain import (
    DegradationChain,
    LoadStrategy,
    NullStrategy,
    ScriptStrategy,
    StaticImageStrategy,
)
from mapreport.provider.channel import ResourceChannel
from mapreport.provider.coordinator import (
    PendingCallback,
    ProviderLoadCoordinator,
    get_coordinator,
    reset_coordinator,
)
from mapreport.provider.handles import (
    MapSdk,
    NullProvider,
    ProviderHandle,
    RealProvider,
    StaticImageProvider,
    StaticPin,
    VisualObject,
)
from mapreport.provider.loader import HttpScriptLoader, ScriptLoader, build_script_url

__all__ = [
    "DegradationChain",
    "HttpScriptLoader",
    "LoadStrategy",
    "MapSdk",
    "NullProvider",
    "NullStrategy",
    "PendingCallback",
    "ProviderHandle",
    "ProviderLoadCoordinator",
    "RealProvider",
    "ResourceChannel",
    "ScriptLoader",
    "ScriptStrategy",
    "StaticImageProvider",
    "StaticImageStrategy",
    "StaticPin",
    "VisualObject",
    "build_script_url",
    "get_coordinator",
    "reset_coordinator",
]
