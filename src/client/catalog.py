"""Query catalog: captured operations first, built-in documents as fallback.

The captured source is the recon log written by the ``recon`` command, a JSON
array of requests::

    [{"url": "...", "method": "POST", "postData": "{\\"operationName\\": ...}"}, ...]

Resolution happens once per run; later lookups hit the cache.
"""

import json
import logging
from pathlib import Path
from typing import Any

from src.client.queries import ACTIVE_APPLICATIONS, BUILTIN_OPERATIONS
from src.core.schemas import QueryOperation

logger = logging.getLogger(__name__)


class QueryCatalog:
    """Maps operation names to QueryOperation objects."""

    def __init__(self, captured: dict[str, QueryOperation] | None = None) -> None:
        self._captured = dict(captured or {})
        self._resolved: dict[str, QueryOperation] = {}

    @classmethod
    def from_recon_log(cls, path: str | Path) -> "QueryCatalog":
        """Build a catalog from a recon log. A missing or bad log means built-ins only."""
        captured = parse_recon_log(Path(path))
        if captured:
            logger.info("Loaded %d captured operations from %s", len(captured), path)
        return cls(captured)

    def resolve(self, name: str) -> QueryOperation:
        """Return the operation for ``name``.

        Raises:
            KeyError: neither captured nor built in.
        """
        if name in self._resolved:
            return self._resolved[name]
        operation = self._captured.get(name)
        if operation is None:
            builtin = BUILTIN_OPERATIONS.get(name)
            if builtin is None:
                msg = f"Unknown query operation '{name}'"
                raise KeyError(msg)
            document, variables = builtin
            operation = QueryOperation(name=name, document=document, variables=dict(variables))
        logger.debug("Resolved operation %s from %s", name, operation.source)
        self._resolved[name] = operation
        return operation

    def resolve_all(self, names: list[str]) -> dict[str, QueryOperation]:
        return {name: self.resolve(name) for name in names}

    @property
    def captured_names(self) -> list[str]:
        return sorted(self._captured)


def parse_recon_log(path: Path) -> dict[str, QueryOperation]:
    """Extract GraphQL operations from a recon log. Latest capture wins.

    Returns an empty dict on any read/parse failure.
    """
    if not path.exists():
        logger.debug("Recon log not found: %s", path)
        return {}
    try:
        requests = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to read recon log %s: %s", path, e)
        return {}
    if not isinstance(requests, list):
        logger.warning("Recon log is not a JSON array: %s", path)
        return {}

    operations: dict[str, QueryOperation] = {}
    for request in requests:
        operation = _parse_request(request)
        if operation is not None:
            operations[operation.name] = operation

    # The listing may have been captured under another operation name. It is
    # filed under the listing key but keeps the name its document defines.
    if ACTIVE_APPLICATIONS not in operations:
        for operation in reversed(list(operations.values())):
            if _is_active_listing(operation.document):
                operations[ACTIVE_APPLICATIONS] = operation
                break
    return operations


def _parse_request(request: Any) -> QueryOperation | None:
    if not isinstance(request, dict):
        return None
    if str(request.get("method", "")).upper() != "POST":
        return None
    post_data = request.get("postData")
    if not post_data:
        return None
    try:
        body = json.loads(post_data)
    except (TypeError, json.JSONDecodeError):
        return None
    if not isinstance(body, dict):
        return None
    name = body.get("operationName")
    document = body.get("query")
    if not name or not document:
        return None
    variables = body.get("variables") or {}
    if not isinstance(variables, dict):
        variables = {}
    return QueryOperation(name=name, document=document, variables=variables, source="captured")


def _is_active_listing(document: str) -> bool:
    if "applicationsByPrebuiltView" in document:
        return True
    return "prebuiltView" in document and "Active" in document
