import json
import logging
import os
import threading
from concurrent import futures
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

import requests
from requests.exceptions import RequestException

from stock_loader.models.cluster import Cluster, HttpMethod
from stock_loader.models.index_provisioner import DEFAULT_ALIAS_NAME

logger = logging.getLogger(__name__)

JSON_HEADERS = {'Content-Type': 'application/json'}
DEFAULT_SCROLL = "10s"


class QueryError(Exception):
    pass


class StockQueries:
    """
    Example searches against the loaded stock data: exact symbol filters, full-text company name
    search, aggregations, and a full scroll over every document.
    """

    def __init__(self, cluster: Cluster, index_name: str = DEFAULT_ALIAS_NAME) -> None:
        self.cluster = cluster
        self.index_name = index_name

    def _post(self, path: str, body: Dict, session=None) -> Dict[str, Any]:
        try:
            r = self.cluster.call_api(path, method=HttpMethod.POST, data=json.dumps(body),
                                      headers=JSON_HEADERS, session=session)
            return r.json()
        except RequestException as e:
            raise QueryError(f"Request to {path} failed: {type(e).__name__} {e}") from e

    def _search(self, body: Dict) -> Dict[str, Any]:
        return self._post(f"/{self.index_name}/_search", body)

    def count(self) -> int:
        try:
            r = self.cluster.call_api(f"/{self.index_name}/_count")
        except RequestException as e:
            raise QueryError(f"Counting documents in '{self.index_name}' failed: {type(e).__name__} {e}") from e
        return r.json()["count"]

    def symbols(self, size: int = 1000) -> List[str]:
        response = self._search({
            "size": 0,
            "aggs": {"symbols": {"terms": {"field": "symbol", "size": size}}}
        })
        return [bucket["key"] for bucket in response["aggregations"]["symbols"]["buckets"]]

    def latest_for_symbol(self, symbol: str, size: int = 20) -> List[Dict[str, Any]]:
        response = self._search({
            "size": size,
            "query": {"bool": {"filter": [{"term": {"symbol": symbol}}]}},
            "sort": [{"date": {"order": "desc"}}]
        })
        return [hit["_source"] for hit in response["hits"]["hits"]]

    def search_name(self, text: str, size: int = 20) -> List[Dict[str, Any]]:
        response = self._search({
            "size": size,
            "query": {"match": {"name": text}},
            "sort": [{"date": {"order": "desc"}}]
        })
        return [hit["_source"] for hit in response["hits"]["hits"]]

    def monthly_volume(self, symbol: str) -> List[Tuple[str, int]]:
        """Total traded volume per calendar month for one symbol, most recent month first."""
        response = self._search({
            "size": 0,
            "query": {"bool": {"filter": [{"term": {"symbol": symbol}}]}},
            "aggs": {
                "by-month": {
                    "date_histogram": {
                        "field": "date",
                        "calendar_interval": "month",
                        "order": {"_key": "desc"}
                    },
                    "aggs": {"trade-volumes": {"sum": {"field": "volume"}}}
                }
            }
        })
        return [(bucket["key_as_string"], int(bucket["trade-volumes"]["value"] or 0))
                for bucket in response["aggregations"]["by-month"]["buckets"]]

    def scroll_documents(self, batch_size: int = 1000, scroll: str = DEFAULT_SCROLL,
                         slice_id: Optional[int] = None,
                         max_slices: Optional[int] = None) -> Generator[List[Dict[str, Any]], None, None]:
        """
        Generator that walks every document in the index one page at a time. When `max_slices` is
        above one, only the `slice_id` share of the documents is visited.
        """
        session = requests.Session()
        body: Dict[str, Any] = {"size": batch_size, "query": {"match_all": {}}}
        if max_slices is not None and max_slices > 1:
            body["slice"] = {"id": slice_id, "max": max_slices}
        response = self._post(f"/{self.index_name}/_search?scroll={scroll}", body, session=session)
        scroll_id = response.get('_scroll_id')
        hits = response.get('hits', {}).get('hits', [])

        try:
            while hits:
                yield [hit['_source'] for hit in hits]
                if not scroll_id:
                    break
                response = self._post("/_search/scroll", {"scroll": scroll, "scroll_id": scroll_id}, session=session)
                scroll_id = response.get('_scroll_id')
                hits = response.get('hits', {}).get('hits', [])
        finally:
            if scroll_id:
                self.cluster.call_api("/_search/scroll", method=HttpMethod.DELETE,
                                      data=json.dumps({"scroll_id": scroll_id}), headers=JSON_HEADERS,
                                      session=session, raise_error=False)

    def scroll_all(self, on_page: Callable[[List[Dict[str, Any]]], None], slices: Optional[int] = None,
                   batch_size: int = 1000, scroll: str = DEFAULT_SCROLL,
                   timeout_seconds: float = 300) -> int:
        """
        Visits every document using one sliced scroll per worker thread and hands each page to
        `on_page`, which may be called from several threads at once. Returns the number of documents seen.

        On timeout a QueryError is raised and every slice stops after the page it is handling.
        """
        slices = slices or os.cpu_count() or 1
        stopped = threading.Event()

        def walk_slice(slice_id: int) -> int:
            seen = 0
            pages = self.scroll_documents(batch_size, scroll, slice_id=slice_id, max_slices=slices)
            try:
                for page in pages:
                    on_page(page)
                    seen += len(page)
                    if stopped.is_set():
                        logger.info(f"Slice {slice_id} of '{self.index_name}' stopped after {seen} documents")
                        break
            finally:
                # Clears the scroll context even when the slice stops early
                pages.close()
            return seen

        executor = futures.ThreadPoolExecutor(max_workers=slices, thread_name_prefix="scroll")
        try:
            pending = [executor.submit(walk_slice, slice_id) for slice_id in range(slices)]
            done, not_done = futures.wait(pending, timeout=timeout_seconds)
            if not_done:
                stopped.set()
                raise QueryError(f"Scroll over '{self.index_name}' did not finish within {timeout_seconds}s; "
                                 f"{len(not_done)} of {slices} slices still running")
            total = sum(future.result() for future in done)
        finally:
            stopped.set()
            executor.shutdown(wait=False, cancel_futures=True)
        logger.info(f"Scrolled {total} documents from '{self.index_name}' in {slices} slice(s)")
        return total
