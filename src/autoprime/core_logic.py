"""Business logic layer for the AutoPrime shop.

This module is the cascade-mutation layer: every create, update, and delete
of a shop entity goes through it so that cross-entity side effects (stock
depletion, odometer tracking, auto-generated ledger entries, cascading
deletes) stay consistent, and so that each mutation leaves exactly one entry
in the audit log. Storage is delegated to :mod:`entity_store`; derived views
(alerts, metrics) are delegated to :mod:`analytics`.
"""

from __future__ import annotations

import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from . import analytics, data_manager, log
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    ODOMETER_SOURCE_CORRECTION,
    ODOMETER_SOURCE_REGISTRATION,
    AuditAction,
    AuditEntity,
    OrderStatus,
    TransactionCategory,
    TransactionType,
)
from .entity_store import EntityStore
from .records import (
    AuditLogRow,
    ClientRow,
    MaintenanceRuleRow,
    OdometerEntry,
    PartRow,
    ServiceItem,
    ServiceOrderRow,
    TransactionRow,
    UsedPart,
    VehicleRow,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced client, vehicle, part, or order is unknown."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised by the availability pre-check when a part cannot cover a request."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the entity store used by the BLL."""

    settings: data_manager.ConfigSettings
    store: EntityStore


@dataclass(frozen=True)
class ServiceOrderCommand:
    """User intent for registering a completed service order.

    ``used_parts`` are snapshots, normally produced by :func:`build_used_part`
    right after :func:`check_part_availability` succeeded.
    """

    client_id: str
    vehicle_id: str
    odometer: int
    used_parts: Sequence[UsedPart] = field(default_factory=tuple)
    services: Sequence[ServiceItem] = field(default_factory=tuple)
    timestamp: Optional[datetime] = None
    mechanic: Optional[str] = None
    notes: Optional[str] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` when provided, otherwise the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


def generate_id() -> str:
    """Generate an opaque unique identifier for a new entity."""

    return str(uuid.uuid4())


def short_id(entity_id: str) -> str:
    """First eight characters of an id, as printed on documents and ledgers."""

    return entity_id[:8]


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and open the data workbook as the store.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context whose store writes through to the workbook after
            every mutation.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    backend = data_manager.WorkbookKeyValueStore.open(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, store=EntityStore(backend))


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate data-file compatibility before mutating state.

    Raises:
        RuntimeError: If the configured schema version does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Data file schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Data file schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Flush the backing store to disk when it supports explicit saves.

    Mutations already write through; this is only needed when the workbook
    store was opened with ``autosave=False``.
    """

    save = getattr(context.store.backend, "save", None)
    if save is not None:
        save()
        log.info("Persisted data file for '%s'", context.settings.shop_name)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Rebuild the entity store from what the backend has persisted.

    For a workbook-backed store the file is reopened from disk, dropping any
    unsaved in-memory edits. Other backends are re-read in place.
    """

    backend = context.store.backend
    if isinstance(backend, data_manager.WorkbookKeyValueStore):
        backend = data_manager.WorkbookKeyValueStore.open(backend.path, autosave=backend.autosave)
        log.info("Reloaded workbook '%s'", backend.path)
    return RuntimeContext(settings=context.settings, store=EntityStore(backend))


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_text(value: Optional[str], field_name: str) -> str:
    """Return ``value`` stripped, rejecting empty text.

    Raises:
        ValueError: If ``value`` is ``None`` or blank.
    """

    if value is None or not str(value).strip():
        log.error("Required field '%s' is empty", field_name)
        raise ValueError(f"{field_name} is required")
    return str(value).strip()


def require_positive_quantity(quantity: int) -> None:
    """Raises ValueError if ``quantity`` is zero or negative."""

    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_number(value: int, field_name: str) -> None:
    """Raises ValueError if ``value`` is negative, naming ``field_name``."""

    if value < 0:
        log.error("Validation failed for '%s': %s", field_name, value)
        raise ValueError(f"{field_name} must be zero or positive")


def to_money(value: Any) -> Decimal:
    """Coerce ``value`` (Decimal, int, float or numeric text) into a ``Decimal``."""

    if isinstance(value, Decimal):
        return value
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        log.error("Monetary value parsing failed: %r", value)
        raise ValueError(f"Invalid monetary value: {value!r}") from exc
    if not amount.is_finite():
        log.error("Monetary value parsing failed: %r", value)
        raise ValueError(f"Invalid monetary value: {value!r}")
    return amount


def require_nonnegative_money(amount: Decimal) -> None:
    """Raises ValueError if ``amount`` is less than zero."""

    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def require_positive_money(amount: Decimal) -> None:
    """Raises ValueError if ``amount`` is zero or negative."""

    if amount <= Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be greater than zero")


def require_positive_interval(months: int) -> None:
    """Raises ValueError if a rule interval is shorter than one month."""

    if months < 1:
        log.error("Interval validation failed: %s", months)
        raise ValueError("Interval must be at least one month")


# ---------------------------------------------------------------------------
# Audit logger
# ---------------------------------------------------------------------------


def record_audit(
    context: RuntimeContext,
    action: AuditAction,
    entity: AuditEntity,
    details: str,
    *,
    timestamp: Optional[datetime] = None,
) -> AuditLogRow:
    """Append one immutable audit entry describing a mutation."""

    entry = AuditLogRow(
        log_id=generate_id(),
        timestamp_iso=_resolve_timestamp(timestamp).isoformat(),
        action=action.value,
        entity=entity.value,
        details=details,
    )
    context.store.audit_log.add(entry)
    return entry


def list_audit_log(context: RuntimeContext, *, newest_first: bool = True) -> List[AuditLogRow]:
    """Return the audit trail, newest entry first by default."""

    entries = context.store.audit_log.list()
    if newest_first:
        entries.reverse()
    return entries


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def list_clients(context: RuntimeContext, *, include_inactive: bool = False) -> List[ClientRow]:
    """Return clients in insertion order, hiding inactive ones by default."""

    clients = context.store.clients.list()
    if include_inactive:
        return clients
    return [client for client in clients if client.is_active]


def get_client(context: RuntimeContext, client_id: str) -> ClientRow:
    """Resolve a client by id.

    Raises:
        MissingReferenceError: If ``client_id`` is unknown.
    """

    client = context.store.clients.get(client_id)
    if client is None:
        log.warning("Client lookup failed for id '%s'", client_id)
        raise MissingReferenceError(f"Unknown client id: {client_id}")
    return client


def get_vehicle(context: RuntimeContext, vehicle_id: str) -> VehicleRow:
    """Resolve a vehicle by id, raising :class:`MissingReferenceError` if unknown."""

    vehicle = context.store.vehicles.get(vehicle_id)
    if vehicle is None:
        log.warning("Vehicle lookup failed for id '%s'", vehicle_id)
        raise MissingReferenceError(f"Unknown vehicle id: {vehicle_id}")
    return vehicle


def get_part(context: RuntimeContext, part_id: str) -> PartRow:
    """Resolve a part by id, raising :class:`MissingReferenceError` if unknown."""

    part = context.store.parts.get(part_id)
    if part is None:
        log.warning("Part lookup failed for id '%s'", part_id)
        raise MissingReferenceError(f"Unknown part id: {part_id}")
    return part


def get_service_order(context: RuntimeContext, order_id: str) -> ServiceOrderRow:
    """Resolve a service order by id, raising :class:`MissingReferenceError` if unknown."""

    order = context.store.service_orders.get(order_id)
    if order is None:
        log.warning("Service order lookup failed for id '%s'", order_id)
        raise MissingReferenceError(f"Unknown service order id: {order_id}")
    return order


def vehicles_of_client(context: RuntimeContext, client_id: str) -> List[VehicleRow]:
    """Vehicles currently registered to ``client_id``, in insertion order."""

    return [vehicle for vehicle in context.store.vehicles if vehicle.client_id == client_id]


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


def add_client(
    context: RuntimeContext,
    *,
    name: str,
    phone: str = "",
    email: str = "",
    notes: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> ClientRow:
    """Register a new, active client."""

    client = ClientRow(
        client_id=generate_id(),
        name=require_text(name, "Client name"),
        phone=phone.strip(),
        email=email.strip(),
        is_active=True,
        created_at_iso=_resolve_timestamp(timestamp).isoformat(),
        notes=notes,
    )
    context.store.clients.add(client)
    record_audit(context, AuditAction.CREATE, AuditEntity.CLIENT, f"Cliente {client.name} criado.")
    log.info("Created client '%s' (%s)", client.client_id, client.name)
    return client


def update_client(context: RuntimeContext, client_id: str, field_values: Mapping[str, Any]) -> Optional[ClientRow]:
    """Shallow-merge ``field_values`` into a client; unknown ids are a no-op."""

    if "name" in field_values:
        field_values = {**field_values, "name": require_text(field_values["name"], "Client name")}
    updated = context.store.clients.update(client_id, field_values)
    if updated is None:
        return None
    record_audit(context, AuditAction.EDIT, AuditEntity.CLIENT, f"Cliente {client_id} editado.")
    log.info("Updated client '%s' fields: %s", client_id, ", ".join(sorted(field_values)))
    return updated


def delete_client(context: RuntimeContext, client_id: str) -> bool:
    """Delete a client together with its vehicles, their orders, and their ledger entries.

    The cascade removes, in order: every service order whose vehicle belongs
    to the client (or which names the client directly), the income entries
    those orders generated, the client's vehicles, and finally the client.

    Returns:
        bool: ``True`` when the client existed and was removed.
    """

    store = context.store
    client = store.clients.get(client_id)
    if client is None:
        log.warning("Ignoring delete of unknown client '%s'", client_id)
        return False

    vehicle_ids = {vehicle.vehicle_id for vehicle in vehicles_of_client(context, client_id)}
    removed_orders = store.service_orders.delete_where(
        lambda order: order.vehicle_id in vehicle_ids or order.client_id == client_id
    )
    removed_entries = _delete_order_ledger_entries(context, {order.order_id for order in removed_orders})
    store.vehicles.delete_where(lambda vehicle: vehicle.client_id == client_id)
    store.clients.delete(client_id)

    record_audit(
        context,
        AuditAction.DELETE,
        AuditEntity.CLIENT,
        f"Cliente {client.name} removido ({len(vehicle_ids)} veículo(s), {len(removed_orders)} OS).",
    )
    log.info(
        "Deleted client '%s' with %d vehicle(s), %d order(s), %d ledger entr(ies)",
        client_id,
        len(vehicle_ids),
        len(removed_orders),
        len(removed_entries),
    )
    return True


# ---------------------------------------------------------------------------
# Vehicles
# ---------------------------------------------------------------------------


def require_client(context: RuntimeContext, client_id: str) -> ClientRow:
    """Pre-check used by front-ends before registering a vehicle or an order.

    The cascade layer itself accepts dangling owners; this is where a caller
    opts into rejecting them.
    """

    return get_client(context, client_id)


def add_vehicle(
    context: RuntimeContext,
    *,
    client_id: str,
    plate: str,
    model: str,
    entry_odometer: int,
    last_maintenance_date: Optional[datetime] = None,
    notes: Optional[str] = None,
    year: Optional[str] = None,
    make: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> VehicleRow:
    """Register a vehicle for ``client_id``.

    The current odometer starts at ``entry_odometer`` and the history starts
    with a single registration reading. The next maintenance is due
    ``default_interval_months`` after the last maintenance date, which
    defaults to the registration moment.

    Raises:
        ValueError: If plate or model is blank or the odometer is negative.
    """

    require_nonnegative_number(entry_odometer, "Entry odometer")
    moment = _resolve_timestamp(timestamp)
    last_maintenance = last_maintenance_date or moment
    next_maintenance = analytics.add_months(last_maintenance, context.settings.default_interval_months)

    if context.store.clients.get(client_id) is None:
        log.warning("Registering vehicle for unknown client '%s'", client_id)

    vehicle = VehicleRow(
        vehicle_id=generate_id(),
        plate=require_text(plate, "Plate").upper(),
        model=require_text(model, "Model"),
        client_id=client_id,
        entry_odometer=entry_odometer,
        current_odometer=entry_odometer,
        odometer_history=(OdometerEntry(moment.isoformat(), entry_odometer, ODOMETER_SOURCE_REGISTRATION),),
        last_maintenance_date_iso=last_maintenance.isoformat(),
        next_maintenance_date_iso=next_maintenance.isoformat(),
        notes=notes,
        year=year,
        make=make,
    )
    context.store.vehicles.add(vehicle)
    record_audit(context, AuditAction.CREATE, AuditEntity.VEHICLE, f"Veículo {vehicle.plate} criado.")
    log.info("Created vehicle '%s' (%s) for client '%s'", vehicle.vehicle_id, vehicle.plate, client_id)
    return vehicle


def update_vehicle(
    context: RuntimeContext,
    vehicle_id: str,
    field_values: Mapping[str, Any],
    *,
    timestamp: Optional[datetime] = None,
) -> Optional[VehicleRow]:
    """Shallow-merge ``field_values`` into a vehicle, keeping derived fields consistent.

    - ``current_odometer`` never decreases: a lower value is ignored, and a
      raised entry odometer pulls the current reading up with it. Any upward
      move appends a correction reading to the history.
    - Changing the entry odometer or the last maintenance date recomputes the
      next maintenance date from the last maintenance date, unless the caller
      sets it explicitly.
    - The odometer history is append-only and cannot be replaced.

    Returns:
        VehicleRow | None: The updated vehicle, or ``None`` for unknown ids.

    Raises:
        BusinessRuleViolation: If ``odometer_history`` is part of the update.
        KeyError: For unknown field names.
    """

    current = context.store.vehicles.get(vehicle_id)
    if current is None:
        log.warning("Ignoring update of unknown vehicle '%s'", vehicle_id)
        return None
    if "odometer_history" in field_values:
        log.error("Rejected direct edit of odometer history for vehicle '%s'", vehicle_id)
        raise BusinessRuleViolation("Odometer history is append-only")

    changes: Dict[str, Any] = dict(field_values)
    entry_changed = "entry_odometer" in changes and changes["entry_odometer"] != current.entry_odometer
    if entry_changed:
        require_nonnegative_number(int(changes["entry_odometer"]), "Entry odometer")

    target_odometer = current.current_odometer
    if "current_odometer" in changes:
        target_odometer = max(target_odometer, int(changes["current_odometer"]))
    if entry_changed:
        target_odometer = max(target_odometer, int(changes["entry_odometer"]))
    changes["current_odometer"] = target_odometer
    if target_odometer != current.current_odometer:
        moment = _resolve_timestamp(timestamp)
        changes["odometer_history"] = current.odometer_history + (
            OdometerEntry(moment.isoformat(), target_odometer, ODOMETER_SOURCE_CORRECTION),
        )

    if (entry_changed or "last_maintenance_date_iso" in changes) and "next_maintenance_date_iso" not in changes:
        last_iso = changes.get("last_maintenance_date_iso", current.last_maintenance_date_iso)
        last_maintenance = analytics.parse_iso(last_iso)
        if last_maintenance is not None:
            changes["next_maintenance_date_iso"] = analytics.add_months(
                last_maintenance, context.settings.default_interval_months
            ).isoformat()

    if "plate" in changes:
        changes["plate"] = require_text(changes["plate"], "Plate").upper()

    updated = context.store.vehicles.update(vehicle_id, changes)
    record_audit(context, AuditAction.EDIT, AuditEntity.VEHICLE, f"Veículo {vehicle_id} editado.")
    log.info("Updated vehicle '%s' fields: %s", vehicle_id, ", ".join(sorted(field_values)))
    return updated


def delete_vehicle(context: RuntimeContext, vehicle_id: str) -> bool:
    """Delete a vehicle together with its service orders and their ledger entries."""

    store = context.store
    vehicle = store.vehicles.get(vehicle_id)
    if vehicle is None:
        log.warning("Ignoring delete of unknown vehicle '%s'", vehicle_id)
        return False

    removed_orders = store.service_orders.delete_where(lambda order: order.vehicle_id == vehicle_id)
    _delete_order_ledger_entries(context, {order.order_id for order in removed_orders})
    store.vehicles.delete(vehicle_id)

    record_audit(
        context,
        AuditAction.DELETE,
        AuditEntity.VEHICLE,
        f"Veículo {vehicle.plate} removido ({len(removed_orders)} OS).",
    )
    log.info("Deleted vehicle '%s' with %d order(s)", vehicle_id, len(removed_orders))
    return True


# ---------------------------------------------------------------------------
# Parts
# ---------------------------------------------------------------------------


def add_part(
    context: RuntimeContext,
    *,
    name: str,
    quantity: int,
    minimum_quantity: int,
    unit_price: Decimal,
    timestamp: Optional[datetime] = None,
) -> PartRow:
    """Register an inventory item and book its purchase as an expense.

    When ``quantity * unit_price`` is positive an ``ESTOQUE`` expense is
    added to the ledger, referencing the new part. The expense survives a
    later deletion of the part.
    """

    require_nonnegative_number(quantity, "Quantity")
    require_nonnegative_number(minimum_quantity, "Minimum quantity")
    require_nonnegative_money(unit_price)
    moment = _resolve_timestamp(timestamp)

    part = PartRow(
        part_id=generate_id(),
        name=require_text(name, "Part name"),
        quantity=quantity,
        minimum_quantity=minimum_quantity,
        unit_price=unit_price,
    )
    context.store.parts.add(part)

    purchase_cost = unit_price * quantity
    if purchase_cost > 0:
        _append_ledger_entry(
            context,
            description=f"Compra de estoque: {part.name} ({quantity} un.)",
            transaction_type=TransactionType.EXPENSE,
            amount=purchase_cost,
            category=TransactionCategory.INVENTORY,
            moment=moment,
            reference_id=part.part_id,
        )

    record_audit(context, AuditAction.CREATE, AuditEntity.INVENTORY, f"Peça {part.name} adicionada.")
    log.info("Created part '%s' (%s) quantity=%s cost=%s", part.part_id, part.name, quantity, purchase_cost)
    return part


def update_part(context: RuntimeContext, part_id: str, field_values: Mapping[str, Any]) -> Optional[PartRow]:
    """Shallow-merge ``field_values`` into a part.

    This is how stock is replenished, since service orders only ever
    decrement quantities. Historical snapshots inside service orders are not
    affected by price or name changes.
    """

    changes: Dict[str, Any] = dict(field_values)
    for name in ("quantity", "minimum_quantity"):
        if name in changes:
            changes[name] = int(changes[name])
            require_nonnegative_number(changes[name], name)
    if "unit_price" in changes:
        changes["unit_price"] = to_money(changes["unit_price"])
        require_nonnegative_money(changes["unit_price"])
    updated = context.store.parts.update(part_id, changes)
    if updated is None:
        return None
    record_audit(context, AuditAction.EDIT, AuditEntity.INVENTORY, f"Peça {updated.name} editada.")
    log.info("Updated part '%s' fields: %s", part_id, ", ".join(sorted(changes)))
    return updated


def delete_part(context: RuntimeContext, part_id: str) -> bool:
    """Delete a part; ledger entries that reference it are kept as history."""

    part = context.store.parts.get(part_id)
    if part is None or not context.store.parts.delete(part_id):
        log.warning("Ignoring delete of unknown part '%s'", part_id)
        return False
    record_audit(context, AuditAction.DELETE, AuditEntity.INVENTORY, f"Peça {part.name} removida.")
    log.info("Deleted part '%s'", part_id)
    return True


def check_part_availability(context: RuntimeContext, part_id: str, quantity: int) -> PartRow:
    """Confirm a part can cover ``quantity`` before it is added to an order.

    Raises:
        MissingReferenceError: If the part is unknown.
        InsufficientStockError: If fewer than ``quantity`` units are on hand.
        ValueError: If ``quantity`` is not positive.
    """

    require_positive_quantity(quantity)
    part = get_part(context, part_id)
    if part.quantity < quantity:
        log.warning("Insufficient stock for part '%s': requested %s, available %s", part_id, quantity, part.quantity)
        raise InsufficientStockError(f"Estoque insuficiente! Disponível: {part.quantity}")
    return part


def build_used_part(context: RuntimeContext, part_id: str, quantity: int) -> UsedPart:
    """Snapshot the part's current name and price for use in a service order."""

    part = check_part_availability(context, part_id, quantity)
    return UsedPart(
        part_id=part.part_id,
        name=part.name,
        quantity=quantity,
        unit_price_snapshot=part.unit_price,
    )


# ---------------------------------------------------------------------------
# Service orders
# ---------------------------------------------------------------------------


def calculate_order_total(used_parts: Iterable[UsedPart], services: Iterable[ServiceItem]) -> Decimal:
    """Sum of every part-line subtotal plus every service-line price."""

    parts_total = sum((item.subtotal for item in used_parts), Decimal("0"))
    services_total = sum((item.price for item in services), Decimal("0"))
    return parts_total + services_total


def validate_service_order(command: ServiceOrderCommand) -> None:
    """Reject malformed order lines.

    Raises:
        ValueError: On a negative odometer, a non-positive part quantity, a
            negative price, or a blank service name.
    """

    require_nonnegative_number(command.odometer, "Odometer")
    for used in command.used_parts:
        require_positive_quantity(used.quantity)
        require_nonnegative_money(used.unit_price_snapshot)
    for item in command.services:
        require_text(item.name, "Service name")
        require_nonnegative_money(item.price)


def add_service_order(context: RuntimeContext, command: ServiceOrderCommand) -> ServiceOrderRow:
    """Register a completed service order and apply its side effects.

    In order: the total is computed from the snapshotted lines, the order is
    stored as completed, every consumed part is decremented by the consumed
    amount, the vehicle's odometer, history, and maintenance dates are
    advanced, and one ``OS`` income entry for the total is added to the
    ledger, referencing the order.

    Stock is not checked here. A quantity can go negative when a caller skips
    :func:`check_part_availability`; that is logged, not rejected.

    Args:
        context (RuntimeContext): Runtime context providing the entity store.
        command (ServiceOrderCommand): Structured order intent.

    Returns:
        ServiceOrderRow: The stored order.

    Raises:
        ValueError: When the order lines fail validation.
    """

    validate_service_order(command)
    store = context.store
    moment = _resolve_timestamp(command.timestamp)
    used_parts = tuple(command.used_parts)
    services = tuple(command.services)

    order = ServiceOrderRow(
        order_id=generate_id(),
        client_id=command.client_id,
        vehicle_id=command.vehicle_id,
        odometer=command.odometer,
        used_parts=used_parts,
        services=services,
        total=calculate_order_total(used_parts, services),
        date_iso=moment.isoformat(),
        status=OrderStatus.COMPLETED.value,
        mechanic=command.mechanic,
        notes=command.notes,
    )
    store.service_orders.add(order)

    _consume_parts(context, used_parts)
    _advance_vehicle(context, order, moment)

    client = store.clients.get(order.client_id)
    client_label = analytics.client_label(client)
    _append_ledger_entry(
        context,
        description=f"OS #{short_id(order.order_id)} - {client_label}",
        transaction_type=TransactionType.INCOME,
        amount=order.total,
        category=TransactionCategory.SERVICE_ORDER,
        moment=moment,
        reference_id=order.order_id,
    )

    record_audit(context, AuditAction.CREATE, AuditEntity.SERVICE_ORDER, f"OS {order.order_id} gerada. Valor: {order.total}")
    log.info(
        "Created service order '%s' for vehicle '%s' (total=%s, parts=%d, services=%d)",
        order.order_id,
        order.vehicle_id,
        order.total,
        len(used_parts),
        len(services),
    )
    return order


def _consume_parts(context: RuntimeContext, used_parts: Sequence[UsedPart]) -> None:
    """Decrement on-hand quantities by the consumed amounts."""

    consumed: "OrderedDict[str, int]" = OrderedDict()
    for used in used_parts:
        consumed[used.part_id] = consumed.get(used.part_id, 0) + used.quantity

    for part_id, quantity in consumed.items():
        part = context.store.parts.get(part_id)
        if part is None:
            log.warning("Consumed part '%s' no longer exists; stock not adjusted", part_id)
            continue
        remaining = part.quantity - quantity
        if remaining < 0:
            log.warning("Part '%s' stock went negative (%s)", part_id, remaining)
        context.store.parts.update(part_id, {"quantity": remaining})


def _advance_vehicle(context: RuntimeContext, order: ServiceOrderRow, moment: datetime) -> None:
    """Apply an order's odometer reading and maintenance dates to its vehicle."""

    vehicle = context.store.vehicles.get(order.vehicle_id)
    if vehicle is None:
        log.warning("Service order '%s' references unknown vehicle '%s'", order.order_id, order.vehicle_id)
        return
    interval = analytics.maintenance_interval_for(
        context.store.maintenance_rules,
        vehicle.vehicle_id,
        (item.name for item in order.services),
        context.settings.default_interval_months,
    )
    context.store.vehicles.update(
        vehicle.vehicle_id,
        {
            "current_odometer": max(vehicle.current_odometer, order.odometer),
            "odometer_history": vehicle.odometer_history
            + (OdometerEntry(order.date_iso, order.odometer, f"OS #{order.order_id}"),),
            "last_maintenance_date_iso": order.date_iso,
            "next_maintenance_date_iso": analytics.add_months(moment, interval).isoformat(),
        },
    )


def delete_service_order(context: RuntimeContext, order_id: str) -> bool:
    """Delete an order and the ledger entry it generated.

    Consumed parts are not restocked: inventory depletion is irreversible
    through this operation.
    """

    if context.store.service_orders.get(order_id) is None:
        log.warning("Ignoring delete of unknown service order '%s'", order_id)
        return False
    removed_entries = _delete_order_ledger_entries(context, {order_id})
    context.store.service_orders.delete(order_id)
    record_audit(context, AuditAction.DELETE, AuditEntity.SERVICE_ORDER, f"OS {order_id} removida.")
    log.info("Deleted service order '%s' and %d ledger entr(ies)", order_id, len(removed_entries))
    return True


# ---------------------------------------------------------------------------
# Maintenance rules
# ---------------------------------------------------------------------------


def add_maintenance_rule(
    context: RuntimeContext,
    *,
    service_name: str,
    interval_months: int,
    vehicle_id: Optional[str] = None,
) -> MaintenanceRuleRow:
    """Create a rule; ``vehicle_id`` restricts it to a single vehicle."""

    require_positive_interval(interval_months)
    rule = MaintenanceRuleRow(
        rule_id=generate_id(),
        service_name=require_text(service_name, "Service name"),
        interval_months=interval_months,
        vehicle_id=vehicle_id or None,
    )
    context.store.maintenance_rules.add(rule)
    record_audit(context, AuditAction.CREATE, AuditEntity.RULE, f"Regra {rule.service_name} criada.")
    log.info("Created maintenance rule '%s' (%s every %d months)", rule.rule_id, rule.service_name, interval_months)
    return rule


def update_maintenance_rule(
    context: RuntimeContext,
    rule_id: str,
    field_values: Mapping[str, Any],
) -> Optional[MaintenanceRuleRow]:
    """Shallow-merge ``field_values`` into a rule; unknown ids are a no-op."""

    if "interval_months" in field_values:
        require_positive_interval(int(field_values["interval_months"]))
    if "service_name" in field_values:
        field_values = {**field_values, "service_name": require_text(field_values["service_name"], "Service name")}
    updated = context.store.maintenance_rules.update(rule_id, field_values)
    if updated is None:
        return None
    record_audit(context, AuditAction.EDIT, AuditEntity.RULE, f"Regra {rule_id} editada.")
    log.info("Updated maintenance rule '%s'", rule_id)
    return updated


def delete_maintenance_rule(context: RuntimeContext, rule_id: str) -> bool:
    """Delete a rule; alerts derived from it disappear on the next recompute."""

    if not context.store.maintenance_rules.delete(rule_id):
        log.warning("Ignoring delete of unknown maintenance rule '%s'", rule_id)
        return False
    record_audit(context, AuditAction.DELETE, AuditEntity.RULE, f"Regra {rule_id} removida.")
    log.info("Deleted maintenance rule '%s'", rule_id)
    return True


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


def _append_ledger_entry(
    context: RuntimeContext,
    *,
    description: str,
    transaction_type: TransactionType,
    amount: Decimal,
    category: TransactionCategory,
    moment: datetime,
    reference_id: Optional[str] = None,
) -> TransactionRow:
    entry = TransactionRow(
        transaction_id=generate_id(),
        description=description,
        transaction_type=transaction_type.value,
        amount=amount,
        date_iso=moment.isoformat(),
        category=category.value,
        reference_id=reference_id,
    )
    context.store.transactions.add(entry)
    return entry


def _delete_order_ledger_entries(context: RuntimeContext, order_ids: Set[str]) -> List[TransactionRow]:
    if not order_ids:
        return []
    return context.store.transactions.delete_where(lambda entry: entry.reference_id in order_ids)


def add_transaction(
    context: RuntimeContext,
    *,
    description: str,
    transaction_type: TransactionType,
    amount: Decimal,
    category: TransactionCategory = TransactionCategory.OTHER,
    timestamp: Optional[datetime] = None,
    reference_id: Optional[str] = None,
) -> TransactionRow:
    """Record a manual ledger entry (rent, bills, payroll, ...)."""

    require_positive_money(amount)
    entry = _append_ledger_entry(
        context,
        description=require_text(description, "Description"),
        transaction_type=TransactionType(transaction_type),
        amount=amount,
        category=TransactionCategory(category),
        moment=_resolve_timestamp(timestamp),
        reference_id=reference_id,
    )
    record_audit(
        context,
        AuditAction.CREATE,
        AuditEntity.FINANCIAL,
        f"Lançamento {entry.description} ({entry.transaction_type}) de {entry.amount} criado.",
    )
    log.info("Created %s transaction '%s' amount=%s", entry.transaction_type, entry.transaction_id, amount)
    return entry


def update_transaction(
    context: RuntimeContext,
    transaction_id: str,
    field_values: Mapping[str, Any],
) -> Optional[TransactionRow]:
    """Shallow-merge ``field_values`` into a ledger entry.

    Enum members are stored by value; the amount must stay positive.
    """

    changes: Dict[str, Any] = dict(field_values)
    if "amount" in changes:
        changes["amount"] = to_money(changes["amount"])
        require_positive_money(changes["amount"])
    if "transaction_type" in changes:
        changes["transaction_type"] = TransactionType(changes["transaction_type"]).value
    if "category" in changes:
        changes["category"] = TransactionCategory(changes["category"]).value
    updated = context.store.transactions.update(transaction_id, changes)
    if updated is None:
        return None
    record_audit(context, AuditAction.EDIT, AuditEntity.FINANCIAL, f"Lançamento {transaction_id} editado.")
    log.info("Updated transaction '%s'", transaction_id)
    return updated


def delete_transaction(context: RuntimeContext, transaction_id: str) -> bool:
    """Delete a ledger entry, manual or auto-generated."""

    if not context.store.transactions.delete(transaction_id):
        log.warning("Ignoring delete of unknown transaction '%s'", transaction_id)
        return False
    record_audit(context, AuditAction.DELETE, AuditEntity.FINANCIAL, f"Lançamento {transaction_id} removido.")
    log.info("Deleted transaction '%s'", transaction_id)
    return True


# ---------------------------------------------------------------------------
# Derived views and UI state
# ---------------------------------------------------------------------------


def current_alerts(context: RuntimeContext, *, now: Optional[datetime] = None) -> List[analytics.Alert]:
    """Recompute alerts from the store's current contents."""

    store = context.store
    return analytics.compute_alerts(
        store.parts.list(),
        store.vehicles.list(),
        store.maintenance_rules.list(),
        store.service_orders.list(),
        store.clients.list(),
        now=now,
        warning_window_days=context.settings.warning_window_days,
    )


def current_metrics(context: RuntimeContext, *, now: Optional[datetime] = None) -> analytics.DashboardMetrics:
    """Recompute dashboard metrics from the store's service orders."""

    return analytics.compute_metrics(context.store.service_orders.list(), now=now)


def monthly_summary(context: RuntimeContext, year: int, month: int) -> analytics.MonthlySummary:
    """Income, expense and balance of the ledger for one UTC month."""

    return analytics.summarize_month(context.store.transactions.list(), year, month)


def get_current_view(context: RuntimeContext) -> str:
    return context.store.get_current_view()


def set_current_view(context: RuntimeContext, view: str) -> None:
    context.store.set_current_view(require_text(view, "View"))
