"""application.backfill sub-package — re-exports public API."""

from application.backfill.backfill_service import (  # noqa: F401
    BackfillService,
    UnknownCacheError,
    get_backfill_service,
    run_startup_backfill,
    shutdown_backfill,
)
from application.backfill.cache_lifecycle import (  # noqa: F401
    prepare_caches,
    refresh_daily_caches,
    retry_missing_entries,
)
from application.backfill.scheduler import BackfillScheduler  # noqa: F401
