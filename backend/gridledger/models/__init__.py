from .properties import ScriptProperty
from .cache import CacheEntry

__all__ = [
    'ScriptProperty',
    'CacheEntry',
]
