"""infrastructure.market_data sub-package — market data adapters (yfinance).

Re-exports the public API so that
``from infrastructure.market_data import YahooStockService`` works unchanged.
"""

from infrastructure.market_data.yahoo_stock_service import (  # noqa: F401
    YahooStockService,
    as_of_date_to_quarter,
    parse_forward_pe_response,
)
