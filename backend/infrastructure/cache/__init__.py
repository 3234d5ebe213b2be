"""infrastructure.cache sub-package — persistent per-statistic JSON caches."""

from infrastructure.cache.manager import CacheManager  # noqa: F401
from infrastructure.cache.managers import (  # noqa: F401
    BackfillCaches,
    EMACacheManager,
    ForwardPECacheManager,
    QuarterlyCacheManager,
    YTDCacheManager,
    create_backfill_caches,
)
from infrastructure.cache.storage import CacheStorage  # noqa: F401
