import logging
from pathlib import Path
from typing import Generator, Iterator, Mapping, Optional, Union

from stock_loader.models.stock_record import (DEFAULT_COMPANY_NAMES, MalformedRecord, StockRecord,
                                              parse_stock_record)

logger = logging.getLogger(__name__)


class SourceUnavailable(Exception):
    def __init__(self, path: Union[str, Path], reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Unable to open stock data file {path}: {reason}")


class RecordSource:
    """
    A single pass over a CSV file of daily stock prices, one StockRecord per non-empty line.

    The file is read lazily line by line, so it can be far larger than memory. The source owns
    the file handle and must be used as a context manager:

        with RecordSource(path) as source:
            for record in source:
                ...

    Lines with too few fields are logged and skipped (see `malformed_lines`). If the underlying
    stream breaks mid-read, iteration stops early and `truncated` is set instead of raising, so the
    caller can treat the run as partially complete.
    """

    def __init__(self, path: Union[str, Path], company_names: Mapping[str, str] = DEFAULT_COMPANY_NAMES,
                 skip_header: bool = False, encoding: str = "utf-8") -> None:
        self.path = Path(path)
        self.company_names = company_names
        self.skip_header = skip_header
        self.encoding = encoding
        self.lines_read = 0
        self.records_read = 0
        self.malformed_lines = 0
        self.truncated = False
        self.error: Optional[Exception] = None
        self._file = None
        self._consumed = False

    def __enter__(self) -> "RecordSource":
        try:
            # Undecodable bytes are replaced so a bad line degrades its fields instead of ending the scan
            self._file = open(self.path, "r", encoding=self.encoding, errors="replace", newline="")
        except OSError as e:
            raise SourceUnavailable(self.path, e.strerror or str(e)) from e
        logger.info(f"Opened stock data file {self.path}")
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            logger.info(f"Closed {self.path} after {self.lines_read} lines, {self.records_read} records, "
                        f"{self.malformed_lines} malformed")

    def __iter__(self) -> Iterator[StockRecord]:
        if self._file is None:
            raise RuntimeError(f"Record source for {self.path} is not open")
        if self._consumed:
            raise RuntimeError(f"Record source for {self.path} has already been read; open a new one to re-read")
        self._consumed = True
        return self._records()

    def _records(self) -> Generator[StockRecord, None, None]:
        lines = iter(self._file)
        while True:
            try:
                line = next(lines)
            except StopIteration:
                return
            except OSError as e:
                self.truncated = True
                self.error = e
                logger.error(f"Reading {self.path} failed after {self.lines_read} lines, ending early: {e}")
                return

            self.lines_read += 1
            if self.skip_header and self.lines_read == 1:
                continue
            line = line.rstrip("\r\n")
            if not line.strip():
                continue
            try:
                record = parse_stock_record(line, self.company_names)
            except MalformedRecord as e:
                self.malformed_lines += 1
                logger.warning(f"Skipping line {self.lines_read} of {self.path}: {e}")
                continue
            self.records_read += 1
            yield record


def read_stock_records(path: Union[str, Path], company_names: Mapping[str, str] = DEFAULT_COMPANY_NAMES,
                       skip_header: bool = False) -> Generator[StockRecord, None, None]:
    """Yields the records of a file, closing it when the scan finishes or the generator is closed early."""
    with RecordSource(path, company_names=company_names, skip_header=skip_header) as source:
        yield from source
