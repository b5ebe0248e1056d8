"""Entity store: the in-memory collections backed by a key-value store.

Each collection is loaded once from the backing :class:`KeyValueStore` and
fully re-serialized under its own key after every successful mutation. No
business rule is enforced here; the cascade layer in :mod:`core_logic` owns
referential integrity and auditing.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Dict, Generic, Iterable, Iterator, List, Mapping, Optional, TypeVar

from . import log, records
from .constants import DEFAULT_VIEW, StorageKey
from .data_manager import KeyValueStore


T = TypeVar("T")

# Exceptions a malformed payload can raise while being decoded. Decimal's
# InvalidOperation is an ArithmeticError.
DECODE_ERRORS = (ValueError, TypeError, KeyError, AttributeError, ArithmeticError)


@dataclass(frozen=True)
class CollectionSpec(Generic[T]):
    """Describe how one entity kind is identified and (de)serialized."""

    key: StorageKey
    label: str
    id_field: str
    serializer: Callable[[T], Dict[str, Any]]
    deserializer: Callable[[Mapping[str, Any]], T]


CLIENTS = CollectionSpec(
    StorageKey.CLIENTS, "client", "client_id",
    records.serialize_client, records.deserialize_client,
)
VEHICLES = CollectionSpec(
    StorageKey.VEHICLES, "vehicle", "vehicle_id",
    records.serialize_vehicle, records.deserialize_vehicle,
)
PARTS = CollectionSpec(
    StorageKey.PARTS, "part", "part_id",
    records.serialize_part, records.deserialize_part,
)
SERVICE_ORDERS = CollectionSpec(
    StorageKey.SERVICE_ORDERS, "service order", "order_id",
    records.serialize_service_order, records.deserialize_service_order,
)
MAINTENANCE_RULES = CollectionSpec(
    StorageKey.MAINTENANCE_RULES, "maintenance rule", "rule_id",
    records.serialize_maintenance_rule, records.deserialize_maintenance_rule,
)
TRANSACTIONS = CollectionSpec(
    StorageKey.TRANSACTIONS, "transaction", "transaction_id",
    records.serialize_transaction, records.deserialize_transaction,
)
AUDIT_LOG = CollectionSpec(
    StorageKey.AUDIT_LOG, "audit log", "log_id",
    records.serialize_audit_log, records.deserialize_audit_log,
)


def load_collection(
    backend: KeyValueStore,
    spec: CollectionSpec[T],
    default: Iterable[T] = (),
) -> List[T]:
    """Read and decode one collection, degrading to ``default`` on failure.

    An absent key, invalid JSON, a payload that is not a list, or any record
    that cannot be decoded all yield a fresh copy of ``default``. The failure
    is logged but never raised.

    Args:
        backend (KeyValueStore): Store holding the serialized collection.
        spec (CollectionSpec): Key and codec of the collection.
        default (Iterable): Records returned when the payload is unusable.

    Returns:
        list: Decoded records in stored (insertion) order.
    """

    raw = backend.get(spec.key.storage_name)
    if raw is None:
        return list(default)
    try:
        payload = json.loads(raw)
        if not isinstance(payload, list):
            raise TypeError(f"expected a list, found {type(payload).__name__}")
        loaded = [spec.deserializer(item) for item in payload]
    except DECODE_ERRORS as exc:
        log.warning("Discarding unreadable '%s' payload: %s", spec.key.storage_name, exc)
        return list(default)
    log.debug("Loaded %d %s record(s)", len(loaded), spec.label)
    return loaded


def save_collection(backend: KeyValueStore, spec: CollectionSpec[T], items: Iterable[T]) -> None:
    """Serialize ``items`` and write them under the collection's key."""

    payload = [spec.serializer(item) for item in items]
    backend.set(spec.key.storage_name, json.dumps(payload, ensure_ascii=False))


class AppendOnlyCollection(Generic[T]):
    """Ordered collection that only ever grows."""

    def __init__(self, backend: KeyValueStore, spec: CollectionSpec[T]) -> None:
        self.backend = backend
        self.spec = spec
        self._items: List[T] = load_collection(backend, spec)

    def _id_of(self, item: T) -> str:
        return getattr(item, self.spec.id_field)

    def _commit(self, items: List[T]) -> None:
        """Write ``items`` and only then make them the in-memory state."""

        save_collection(self.backend, self.spec, items)
        self._items = items

    def add(self, item: T) -> str:
        """Append ``item``, persist the collection, and return its id."""

        self._commit([*self._items, item])
        return self._id_of(item)

    def get(self, item_id: str) -> Optional[T]:
        for item in self._items:
            if self._id_of(item) == item_id:
                return item
        return None

    def list(self) -> List[T]:
        """Return a copy of the records in insertion order."""

        return list(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)


class EntityCollection(AppendOnlyCollection[T]):
    """Collection supporting shallow-merge updates and deletion by id."""

    def update(self, item_id: str, field_values: Mapping[str, Any]) -> Optional[T]:
        """Shallow-merge ``field_values`` into the record identified by ``item_id``.

        Args:
            item_id (str): Identifier of the record to update.
            field_values (Mapping[str, Any]): Replacement values keyed by
                dataclass field name.

        Returns:
            The updated record, or ``None`` when ``item_id`` is unknown (the
            call is then a no-op and nothing is written).

        Raises:
            KeyError: If a field is unknown or is the immutable id field.
        """

        for index, item in enumerate(self._items):
            if self._id_of(item) != item_id:
                continue
            allowed = {field.name for field in fields(item)} - {self.spec.id_field}
            for name in field_values:
                if name not in allowed:
                    raise KeyError(f"Unknown {self.spec.label} field: {name}")
            updated = replace(item, **dict(field_values))
            self._commit([*self._items[:index], updated, *self._items[index + 1:]])
            return updated
        log.warning("Ignoring update of unknown %s '%s'", self.spec.label, item_id)
        return None

    def delete(self, item_id: str) -> bool:
        """Remove the record identified by ``item_id``; unknown ids are a no-op."""

        return bool(self.delete_where(lambda item: self._id_of(item) == item_id))

    def delete_where(self, predicate: Callable[[T], bool]) -> List[T]:
        """Remove every record matching ``predicate`` with a single write.

        Returns:
            list: The removed records, in their former order. Nothing is
            written when the list is empty.
        """

        removed = [item for item in self._items if predicate(item)]
        if not removed:
            return []
        self._commit([item for item in self._items if not predicate(item)])
        return removed


class EntityStore:
    """Owner of every collection the shop keeps.

    A store is an explicit object rather than module state, so a fresh one can
    be built around any :class:`KeyValueStore` (an in-memory dictionary in
    tests, the data workbook in production).
    """

    def __init__(self, backend: KeyValueStore) -> None:
        self.backend = backend
        self.clients: EntityCollection[records.ClientRow] = EntityCollection(backend, CLIENTS)
        self.vehicles: EntityCollection[records.VehicleRow] = EntityCollection(backend, VEHICLES)
        self.parts: EntityCollection[records.PartRow] = EntityCollection(backend, PARTS)
        self.service_orders: EntityCollection[records.ServiceOrderRow] = EntityCollection(backend, SERVICE_ORDERS)
        self.maintenance_rules: EntityCollection[records.MaintenanceRuleRow] = EntityCollection(
            backend, MAINTENANCE_RULES)
        self.transactions: EntityCollection[records.TransactionRow] = EntityCollection(backend, TRANSACTIONS)
        self.audit_log: AppendOnlyCollection[records.AuditLogRow] = AppendOnlyCollection(backend, AUDIT_LOG)

    def get_current_view(self) -> str:
        """Return the persisted view selector, defaulting to the dashboard."""

        raw = self.backend.get(StorageKey.CURRENT_VIEW.storage_name)
        if raw is None:
            return DEFAULT_VIEW
        try:
            view = json.loads(raw)
        except ValueError:
            log.warning("Discarding unreadable current view payload")
            return DEFAULT_VIEW
        return view if isinstance(view, str) and view else DEFAULT_VIEW

    def set_current_view(self, view: str) -> None:
        self.backend.set(StorageKey.CURRENT_VIEW.storage_name, json.dumps(view))
