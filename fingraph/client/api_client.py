"""
client/api_client.py - HTTP client for the FinGraph API

Wraps the REST endpoints with httpx and keeps a QueryCache consistent
with every recalculation the server reports, including partial ones.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
import logging

import httpx

from fingraph.core.enums import DomainNode
from fingraph.errors import ApiError, RecalcIncompleteError

from .cache import QueryCache, RunSummary
from .queries import RECORDS_QUERY, register_defaults

logger = logging.getLogger(__name__)


NodeArg = Union[DomainNode, str]


def _node_value(node: NodeArg) -> str:
    return node.value if isinstance(node, DomainNode) else str(node)


class FinGraphClient:
    """
    Synchronous API client with a dependency-aware query cache.

    Usage:
        with FinGraphClient("http://localhost:8000") as client:
            client.add_record("Compta", 2024, "revenue", "Q1 sales", 12000)
            outputs = client.graph_outputs()
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        cache: Optional[QueryCache] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.cache = cache if cache is not None else register_defaults()
        self._http = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "FinGraphClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        logger.debug(f"{method} {path}")
        return self._http.request(method, path, **kwargs)

    @staticmethod
    def _body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    def _expect_ok(self, response: httpx.Response) -> Any:
        body = self._body(response)
        if response.is_success:
            return body
        raise ApiError(response.status_code, body)

    def _apply_run(self, response: httpx.Response, run_field: Optional[str] = None) -> Any:
        """
        Invalidate caches for the run a response reports.

        A partial run is applied before RecalcIncompleteError is raised, so
        the domains that did recompute are never served stale.
        """
        body = self._body(response)

        if response.status_code == 500 and isinstance(body, dict) and body.get("partial"):
            run = RunSummary.from_dict(body)
            self.cache.on_recalc_completed(run)
            logger.warning(
                f"Recalc {run.run_id} incomplete at {run.failed_node.value if run.failed_node else '?'}"
            )
            raise RecalcIncompleteError(run, body.get("error"))

        if not response.is_success:
            raise ApiError(response.status_code, body)

        run_data = body[run_field] if run_field else body
        self.cache.on_recalc_completed(RunSummary.from_dict(run_data))
        return body

    # -------------------------------------------------------------------------
    # Graph
    # -------------------------------------------------------------------------

    def nodes(self) -> List[str]:
        """Declared domain identifiers, in tie-break order. Never cached."""
        return self._expect_ok(self._request("GET", "/api/graph/nodes"))["nodes"]

    def recalc(self, source: NodeArg, year: Optional[int] = None) -> RunSummary:
        """
        Ask the server to recalculate from `source`.

        `year=None` requests the explicit all-years scope.

        Raises:
            RecalcIncompleteError: the run stopped at a failing domain.
            ApiError: unknown source, invalid year or server not ready.
        """
        payload: Dict[str, Any] = {"source": _node_value(source)}
        if year is None:
            payload["allYears"] = True
        else:
            payload["year"] = year

        body = self._apply_run(self._request("POST", "/api/graph/recalc", json=payload))
        return RunSummary.from_dict(body)

    def graph_outputs(self) -> Dict[str, Any]:
        return self.cache.get(
            ("graph-outputs",),
            lambda: self._expect_ok(self._request("GET", "/api/graph/outputs")),
        )

    def recent_events(self, limit: int = 20) -> List[Dict[str, Any]]:
        return self.cache.get(
            ("recent-events", limit),
            lambda: self._expect_ok(
                self._request("GET", "/api/events/recent", params={"limit": limit})
            ),
        )

    # -------------------------------------------------------------------------
    # Domain records
    # -------------------------------------------------------------------------

    def records(self, node: NodeArg, year: Optional[int] = None) -> List[Dict[str, Any]]:
        params = {"year": year} if year is not None else None
        value = _node_value(node)
        return self.cache.get(
            (RECORDS_QUERY, value, year),
            lambda: self._expect_ok(
                self._request("GET", f"/api/domains/{value}/records", params=params)
            )["records"],
            year=year,
        )

    def add_record(
        self,
        node: NodeArg,
        year: int,
        category: str,
        label: str,
        amount: float,
    ) -> Dict[str, Any]:
        """
        Add a record; the server recalculates from `node` for `year`.

        Returns:
            {"record": ..., "run": ...}
        """
        payload = {"year": year, "category": category, "label": label, "amount": amount}
        response = self._request("POST", f"/api/domains/{_node_value(node)}/records", json=payload)
        return self._after_mutation(response)

    def delete_record(self, node: NodeArg, record_id: int) -> Dict[str, Any]:
        response = self._request("DELETE", f"/api/domains/{_node_value(node)}/records/{record_id}")
        return self._after_mutation(response)

    def _after_mutation(self, response: httpx.Response) -> Dict[str, Any]:
        if response.is_success or response.status_code == 500:
            self.cache.invalidate_query(RECORDS_QUERY)
        return self._apply_run(response, run_field="run")

    def mutate_and_recalc(
        self,
        mutation: Callable[[], Any],
        source: NodeArg,
        year: Optional[int] = None,
        direct_queries: Iterable[str] = (),
    ) -> RunSummary:
        """
        Run a mutation performed elsewhere, then recalculate from `source`.

        The mutation's own queries are invalidated before the recalc, so
        they are stale even if the recalc fails.
        """
        mutation()
        for query_name in direct_queries:
            self.cache.invalidate_query(query_name)
        return self.recalc(source, year)
