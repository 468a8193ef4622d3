"""Block storage: in-memory cache overlay and on-disk mechanisms."""

from .cache import Cache, CacheState
from .mechanisms import (
    MECHANISM_REGISTRY,
    Mechanism,
    MultipleFiles,
    NoFile,
    SingleFile,
    mechanism_from_descriptor,
)
from .hierarchical import HierarchicalStorage, stitch
