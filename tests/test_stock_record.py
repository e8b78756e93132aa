import datetime as dt
from types import MappingProxyType

import pytest

from stock_loader.models.stock_record import DEFAULT_COMPANY_NAMES, MalformedRecord, StockRecord, parse_stock_record


def test_parse_well_formed_line():
    record = parse_stock_record("2013-02-08,15.07,15.12,14.63,14.75,8407500,AAL")
    assert record == StockRecord(date=dt.date(2013, 2, 8), open=15.07, high=15.12, low=14.63, close=14.75,
                                 volume=8407500, symbol="AAL", name="American Airlines Group Inc")


def test_parse_corrupted_open_defaults_only_that_field():
    record = parse_stock_record("2013-02-08,NaNtext,15.12,14.63,14.75,8407500,AAL")
    assert record.open == 0.0
    assert record.date == dt.date(2013, 2, 8)
    assert record.high == 15.12
    assert record.low == 14.63
    assert record.close == 14.75
    assert record.volume == 8407500
    assert record.symbol == "AAL"
    assert record.name == "American Airlines Group Inc"


@pytest.mark.parametrize("line", [
    "not-a-date,a,b,c,d,e,AAL",
    ",,,,,,",
    "2013-02-08,nan,inf,-inf,1e400,-5,XYZ",
    "2013-02-08,15.07,15.12,14.63,14.75,8407500.5,AAL",
    "2013-02-08,15.07,15.12,14.63,14.75,99999999999999999999999,AAL",
])
def test_garbage_fields_never_raise(line):
    record = parse_stock_record(line)
    assert isinstance(record, StockRecord)


def test_non_finite_prices_and_negative_volume_default():
    record = parse_stock_record("2013-02-08,nan,inf,-inf,1e400,-5,XYZ")
    assert (record.open, record.high, record.low, record.close) == (0.0, 0.0, 0.0, 0.0)
    assert record.volume == 0
    assert parse_stock_record("2013-02-08,1,2,3,4,99999999999999999999999,XYZ").volume == 0


def test_unparsable_date_is_unset():
    record = parse_stock_record("yesterday,1,2,3,4,5,MSFT")
    assert record.date is None
    assert record.to_document()["date"] is None


@pytest.mark.parametrize("raw_date", ["2013-02-08", "2013-02-08T09:30:00", "02/08/2013", "2013/02/08"])
def test_supported_date_formats(raw_date):
    assert parse_stock_record(f"{raw_date},1,2,3,4,5,MSFT").date == dt.date(2013, 2, 8)


def test_fields_are_trimmed():
    record = parse_stock_record(" 2013-02-08 , 15.07 ,15.12,14.63,14.75, 8407500 , MSFT ")
    assert record.open == 15.07
    assert record.volume == 8407500
    assert record.symbol == "MSFT"
    assert record.name == "Microsoft Corporation"


def test_extra_fields_are_ignored():
    record = parse_stock_record("2013-02-08,15.07,15.12,14.63,14.75,8407500,AAL,extra,columns")
    assert record.symbol == "AAL"


@pytest.mark.parametrize("line", ["", "2013-02-08,15.07,15.12,14.63,14.75,8407500", "just some text"])
def test_too_few_fields_raises_malformed_record(line):
    with pytest.raises(MalformedRecord) as excinfo:
        parse_stock_record(line)
    assert excinfo.value.line == line


def test_unknown_symbol_leaves_name_unset():
    record = parse_stock_record("2013-02-08,1,2,3,4,5,ZZZZ")
    assert record.symbol == "ZZZZ"
    assert record.name is None


def test_symbol_lookup_is_exact():
    assert parse_stock_record("2013-02-08,1,2,3,4,5,msft").name is None


def test_company_names_can_be_substituted():
    names = MappingProxyType({"ACME": "Acme Corporation"})
    assert parse_stock_record("2013-02-08,1,2,3,4,5,ACME", names).name == "Acme Corporation"
    assert parse_stock_record("2013-02-08,1,2,3,4,5,AAL", names).name is None


def test_default_company_names_are_immutable():
    with pytest.raises(TypeError):
        DEFAULT_COMPANY_NAMES["NEW"] = "New Company"


def test_to_document_serializes_date_as_iso_string():
    document = parse_stock_record("2013-02-08,15.07,15.12,14.63,14.75,8407500,AAL").to_document()
    assert document == {
        "date": "2013-02-08",
        "open": 15.07,
        "high": 15.12,
        "low": 14.63,
        "close": 14.75,
        "volume": 8407500,
        "symbol": "AAL",
        "name": "American Airlines Group Inc",
    }


def test_volume_beyond_long_range_defaults():
    record = parse_stock_record("2013-02-08,15.07,15.12,14.63,14.75,99999999999999999999999,AAL")
    assert record.volume == 0
    assert record.close == 14.75
    assert record.to_document()["volume"] == 0


def test_largest_long_volume_is_kept():
    assert parse_stock_record(f"2013-02-08,1,2,3,4,{2 ** 63 - 1},AAL").volume == 2 ** 63 - 1
