"""application.quotes sub-package — re-exports public API."""

from application.quotes.quote_fetch_coordinator import (  # noqa: F401
    ensure_closed_market_symbol,
    extract_market_state,
    fetch_closed_market,
    fetch_extended_hours,
    fetch_for_session,
    fetch_initial_load,
    fetch_regular_session,
)
