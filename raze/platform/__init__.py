"""Platform predicates and classification of platform-restricted edges."""

from .resolver import Classification, EdgeClassification, PlatformResolver
from .rustc import RustcPlatformProbe, parse_cfg_output

__all__ = [
    "Classification",
    "EdgeClassification",
    "PlatformResolver",
    "RustcPlatformProbe",
    "parse_cfg_output",
]
