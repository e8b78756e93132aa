import logging
from typing import Dict, List, Tuple

from stock_loader.middleware.json_support import support_json_return
from stock_loader.models.stock_queries import QueryError, StockQueries
from stock_loader.models.utils import ExitCode

logger = logging.getLogger(__name__)


def _failure(operation: str, e: Exception) -> Tuple[ExitCode, str]:
    logger.error(f"Failed to {operation}: {e}")
    return ExitCode.FAILURE, f"Failure on {operation}: {type(e).__name__} {e}"


@support_json_return()
def count(queries: StockQueries) -> Tuple[ExitCode, Dict | str]:
    try:
        return ExitCode.SUCCESS, {"index": queries.index_name, "count": queries.count()}
    except QueryError as e:
        return _failure("count", e)


@support_json_return()
def symbols(queries: StockQueries, size: int = 1000) -> Tuple[ExitCode, List | str]:
    try:
        return ExitCode.SUCCESS, queries.symbols(size=size)
    except QueryError as e:
        return _failure("list symbols", e)


@support_json_return()
def latest_for_symbol(queries: StockQueries, symbol: str, size: int = 20) -> Tuple[ExitCode, List | str]:
    try:
        return ExitCode.SUCCESS, queries.latest_for_symbol(symbol, size=size)
    except QueryError as e:
        return _failure(f"get prices for {symbol}", e)


@support_json_return()
def search_name(queries: StockQueries, text: str, size: int = 20) -> Tuple[ExitCode, List | str]:
    try:
        return ExitCode.SUCCESS, queries.search_name(text, size=size)
    except QueryError as e:
        return _failure(f"search company names for '{text}'", e)


@support_json_return()
def monthly_volume(queries: StockQueries, symbol: str) -> Tuple[ExitCode, List | str]:
    try:
        return ExitCode.SUCCESS, [{"month": month, "volume": volume}
                                  for month, volume in queries.monthly_volume(symbol)]
    except QueryError as e:
        return _failure(f"get monthly volume for {symbol}", e)
