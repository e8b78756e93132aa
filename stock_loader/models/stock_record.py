import logging
import math
import datetime as dt
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = ","
# date, open, high, low, close, volume, symbol
REQUIRED_FIELD_COUNT = 7

DATE_FORMATS = ["%m/%d/%Y", "%Y/%m/%d"]

# Largest value the index can store in a `long` field
MAX_VOLUME = 2 ** 63 - 1

DEFAULT_COMPANY_NAMES: Mapping[str, str] = MappingProxyType({
    "AAL": "American Airlines Group Inc",
    "MSFT": "Microsoft Corporation",
    "AME": "AMETEK, Inc.",
    "M": "Macy's Inc",
})


class MalformedRecord(ValueError):
    """A line that does not have enough fields to be read as a stock record."""

    def __init__(self, line: str, field_count: int):
        self.line = line
        self.field_count = field_count
        super().__init__(f"Expected at least {REQUIRED_FIELD_COUNT} fields but found {field_count}: {line!r}")


class StockRecord(BaseModel):
    """One day of trading for one ticker symbol."""
    date: Optional[dt.date] = None
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0
    volume: int = 0
    symbol: str = ""
    name: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def _parse_date(value: str) -> Optional[dt.date]:
    try:
        # Also accepts a full ISO timestamp, the time part is dropped
        return dt.datetime.fromisoformat(value).date()
    except ValueError:
        pass
    for date_format in DATE_FORMATS:
        try:
            return dt.datetime.strptime(value, date_format).date()
        except ValueError:
            continue
    return None


def _parse_price(value: str) -> Optional[float]:
    try:
        price = float(value)
    except ValueError:
        return None
    # nan and inf parse as floats but cannot be serialized as JSON for the cluster
    return price if math.isfinite(price) else None


def _parse_volume(value: str) -> Optional[int]:
    try:
        volume = int(value)
    except ValueError:
        return None
    return volume if 0 <= volume <= MAX_VOLUME else None


FIELD_PARSERS: List[tuple[str, Callable[[str], Any]]] = [
    ("date", _parse_date),
    ("open", _parse_price),
    ("high", _parse_price),
    ("low", _parse_price),
    ("close", _parse_price),
    ("volume", _parse_volume),
]


def parse_stock_record(line: str, company_names: Mapping[str, str] = DEFAULT_COMPANY_NAMES) -> StockRecord:
    """
    Reads one CSV line (date, open, high, low, close, volume, symbol) into a StockRecord.

    Every field is parsed on its own; a field that cannot be parsed keeps its default value
    (unset date, 0.0 price, 0 volume) and the rest of the record is still returned. The
    company name is looked up by symbol in `company_names` and left unset when missing.

    :raises MalformedRecord: if the line has fewer than 7 comma separated fields.
    """
    columns = [column.strip() for column in line.split(FIELD_SEPARATOR)]
    if len(columns) < REQUIRED_FIELD_COUNT:
        raise MalformedRecord(line, len(columns))

    values: Dict[str, Any] = {}
    for (field_name, parser), raw_value in zip(FIELD_PARSERS, columns):
        parsed = parser(raw_value)
        if parsed is None:
            logger.debug(f"Defaulting unparsable {field_name} value {raw_value!r} in line {line!r}")
            continue
        values[field_name] = parsed

    symbol = columns[6]
    return StockRecord(symbol=symbol, name=company_names.get(symbol), **values)
