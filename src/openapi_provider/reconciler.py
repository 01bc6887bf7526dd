"""
State reconciler.

Maps remote responses back onto instance state:

- create/read/update merge the decoded payload over the pre-call values
  (the remote payload wins on overlap)
- a 404 on read/update becomes ``removed=True`` instead of an error
- list produces a single-pass iterator of decoded instances
- ``diff`` compares desired and actual state for drift detection
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from openapi_provider.catalog import CatalogEntry, OperationKind
from openapi_provider.executor import ExchangeResult
from openapi_provider.schema import codec
from openapi_provider.schema.models import ResourceSchema

logger = structlog.get_logger()


@dataclass(frozen=True)
class ReconcileResult:
    """New instance state after one operation.

    ``removed`` signals that the instance no longer exists upstream; the host
    should drop it from its own state. ``state`` is ``None`` after a delete.
    """

    state: dict[str, Any] | None
    removed: bool = False


@dataclass(frozen=True)
class FieldDrift:
    """A field whose remote value differs from the desired one."""

    field: str
    desired: Any
    actual: Any
    requires_replacement: bool = False
    sensitive: bool = False


class StateReconciler:
    """Stateless; safe to share across concurrent calls."""

    def reconcile(
        self,
        entry: CatalogEntry,
        kind: OperationKind,
        result: ExchangeResult,
        prior: Mapping[str, Any] | None = None,
    ) -> ReconcileResult:
        prior = prior or {}
        if kind is OperationKind.DELETE:
            return ReconcileResult(state=None, removed=result.not_found)
        if result.not_found:
            logger.info("resource_removed_upstream", resource=entry.name, operation=kind.value)
            return ReconcileResult(state=None, removed=True)

        state = dict(prior)
        if result.polled:
            state.update(self._decode(entry, result.initial_body))
        state.update(self._decode(entry, result.body))
        return ReconcileResult(state=state)

    def reconcile_list(
        self,
        entry: CatalogEntry,
        result: ExchangeResult,
        filters: Mapping[str, Any] | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Decode a collection response into per-instance state.

        The returned iterator reflects one fetch and can be consumed once.
        It is empty, never ``None``, for an empty collection.
        """
        items = _collection_items(result.body)
        decoded = []
        for item in items:
            if not isinstance(item, Mapping):
                logger.warning("list_item_skipped", resource=entry.name, item_type=type(item).__name__)
                continue
            state = codec.decode(entry.schema.fields, item, resource=entry.name)
            if filters and not all(_matches(v, state.get(k)) for k, v in filters.items()):
                continue
            decoded.append(state)
        logger.debug("list_reconciled", resource=entry.name, received=len(items), returned=len(decoded))
        return iter(decoded)

    def _decode(self, entry: CatalogEntry, payload: Any) -> dict[str, Any]:
        if not isinstance(payload, Mapping):
            return {}
        return codec.decode(entry.schema.fields, payload, resource=entry.name)


def _collection_items(body: Any) -> list[Any]:
    if body is None:
        return []
    if isinstance(body, list):
        return body
    if isinstance(body, Mapping):
        # Wrapped collections: {"items": [...]} or similar, with a single list property.
        lists = [value for value in body.values() if isinstance(value, list)]
        if len(lists) == 1:
            return lists[0]
    return []


def diff(schema: ResourceSchema, desired: Mapping[str, Any], actual: Mapping[str, Any]) -> list[FieldDrift]:
    """Fields set in ``desired`` whose value differs in ``actual``.

    Computed fields are never reported. Nested objects are compared on the
    keys the desired value sets.
    """
    drifts: list[FieldDrift] = []
    for f in schema.fields:
        if f.computed or desired.get(f.name) is None:
            continue
        if _matches(desired[f.name], actual.get(f.name)):
            continue
        drifts.append(
            FieldDrift(
                field=f.name,
                desired=desired[f.name],
                actual=actual.get(f.name),
                requires_replacement=f.immutable,
                sensitive=f.sensitive,
            )
        )
    return drifts


def _matches(desired: Any, actual: Any) -> bool:
    if isinstance(desired, Mapping):
        if not isinstance(actual, Mapping):
            return False
        return all(_matches(v, actual.get(k)) for k, v in desired.items() if v is not None)
    if isinstance(desired, (list, tuple)):
        if not isinstance(actual, (list, tuple)) or len(desired) != len(actual):
            return False
        return all(_matches(d, a) for d, a in zip(desired, actual))
    if isinstance(desired, bool) or isinstance(actual, bool):
        return desired is actual
    if isinstance(desired, (int, float)) and isinstance(actual, (int, float)):
        return float(desired) == float(actual)
    return desired == actual
