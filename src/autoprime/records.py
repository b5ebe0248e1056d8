"""Typed records for every entity kept by the shop, plus their JSON codecs.

Rows are frozen dataclasses: a mutation always produces a replacement row,
which keeps snapshot fields (part lines inside a service order) immutable by
construction. The ``serialize_*`` helpers emit the field names used by the
browser build's local storage, so the same JSON documents can be read by
either front-end. ``deserialize_*`` helpers coerce loosely typed JSON values
into predictable Python types and raise ``KeyError``/``ValueError``/``TypeError``
when a payload is malformed; callers decide how to degrade.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .constants import OrderStatus, TransactionCategory


Number = Union[int, float]


def money_to_json(amount: Decimal) -> Number:
    """Render a :class:`~decimal.Decimal` as a plain JSON number.

    Fractional amounts travel as IEEE doubles, so they round-trip exactly up
    to 15 significant digits (any amount in cents below one trillion).
    Longer amounts come back rounded.
    """

    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


def money_from_json(raw: Any) -> Decimal:
    """Parse a JSON number (or numeric string) into a ``Decimal``."""

    if raw is None:
        return Decimal("0")
    if isinstance(raw, bool):
        raise TypeError("Boolean is not a monetary value")
    return Decimal(str(raw))


def _optional_str(raw: Any) -> Optional[str]:
    return str(raw) if raw not in (None, "") else None


@dataclass(frozen=True)
class ClientRow:
    """A customer of the shop."""

    client_id: str
    name: str
    phone: str
    email: str
    is_active: bool
    created_at_iso: str
    notes: Optional[str] = None


@dataclass(frozen=True)
class OdometerEntry:
    """One reading in a vehicle's odometer history."""

    date_iso: str
    reading: int
    source: str


@dataclass(frozen=True)
class VehicleRow:
    """A vehicle owned by a client.

    ``current_odometer`` never decreases; ``odometer_history`` is append-only.
    """

    vehicle_id: str
    plate: str
    model: str
    client_id: str
    entry_odometer: int
    current_odometer: int
    odometer_history: Tuple[OdometerEntry, ...]
    last_maintenance_date_iso: str
    next_maintenance_date_iso: Optional[str] = None
    notes: Optional[str] = None
    year: Optional[str] = None
    make: Optional[str] = None


@dataclass(frozen=True)
class PartRow:
    """An inventory item."""

    part_id: str
    name: str
    quantity: int
    minimum_quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class UsedPart:
    """Snapshot of a part consumed by a service order."""

    part_id: str
    name: str
    quantity: int
    unit_price_snapshot: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price_snapshot * self.quantity


@dataclass(frozen=True)
class ServiceItem:
    """An ad-hoc labour line on a service order."""

    name: str
    price: Decimal
    item_id: Optional[str] = None


@dataclass(frozen=True)
class ServiceOrderRow:
    """A finalized record of work performed on a vehicle."""

    order_id: str
    client_id: str
    vehicle_id: str
    odometer: int
    used_parts: Tuple[UsedPart, ...]
    services: Tuple[ServiceItem, ...]
    total: Decimal
    date_iso: str
    status: str = OrderStatus.COMPLETED.value
    mechanic: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class MaintenanceRuleRow:
    """Recurring service policy; ``vehicle_id`` of ``None`` means every vehicle."""

    rule_id: str
    service_name: str
    interval_months: int
    vehicle_id: Optional[str] = None


@dataclass(frozen=True)
class TransactionRow:
    """A ledger entry, entered manually or generated by the cascade layer."""

    transaction_id: str
    description: str
    transaction_type: str
    amount: Decimal
    date_iso: str
    category: str
    reference_id: Optional[str] = None


@dataclass(frozen=True)
class AuditLogRow:
    """An immutable record of one mutation."""

    log_id: str
    timestamp_iso: str
    action: str
    entity: str
    details: str


def serialize_client(record: ClientRow) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": record.client_id,
        "nome": record.name,
        "telefone": record.phone,
        "email": record.email,
        "ativo": record.is_active,
        "createdAt": record.created_at_iso,
    }
    if record.notes is not None:
        payload["notas"] = record.notes
    return payload


def deserialize_client(raw: Mapping[str, Any]) -> ClientRow:
    return ClientRow(
        client_id=str(raw["id"]),
        name=str(raw["nome"]),
        phone=str(raw.get("telefone") or ""),
        email=str(raw.get("email") or ""),
        is_active=bool(raw.get("ativo", True)),
        created_at_iso=str(raw.get("createdAt") or ""),
        notes=_optional_str(raw.get("notas")),
    )


def serialize_odometer_entry(entry: OdometerEntry) -> Dict[str, Any]:
    return {"data": entry.date_iso, "km": entry.reading, "origem": entry.source}


def deserialize_odometer_entry(raw: Mapping[str, Any]) -> OdometerEntry:
    return OdometerEntry(
        date_iso=str(raw["data"]),
        reading=int(raw["km"]),
        source=str(raw.get("origem") or ""),
    )


def serialize_vehicle(record: VehicleRow) -> Dict[str, Any]:
    """Convert a vehicle into its storage document.

    Optional descriptive fields are omitted when unset, mirroring how the
    browser build leaves absent keys out of the stored JSON.
    """

    payload: Dict[str, Any] = {
        "id": record.vehicle_id,
        "placa": record.plate,
        "modelo": record.model,
        "clienteId": record.client_id,
        "kmEntrada": record.entry_odometer,
        "kmAtual": record.current_odometer,
        "historicoKm": [serialize_odometer_entry(entry) for entry in record.odometer_history],
        "dataUltimaManutencao": record.last_maintenance_date_iso,
    }
    optional = {
        "dataProximaManutencao": record.next_maintenance_date_iso,
        "notas": record.notes,
        "ano": record.year,
        "marca": record.make,
    }
    payload.update({key: value for key, value in optional.items() if value is not None})
    return payload


def deserialize_vehicle(raw: Mapping[str, Any]) -> VehicleRow:
    """Convert a storage document into a :class:`VehicleRow`.

    ``kmAtual`` defaults to ``kmEntrada`` when absent, and an empty history is
    accepted for documents written before odometer tracking existed.
    """

    entry_odometer = int(raw["kmEntrada"])
    history = tuple(deserialize_odometer_entry(item) for item in raw.get("historicoKm") or [])
    return VehicleRow(
        vehicle_id=str(raw["id"]),
        plate=str(raw["placa"]),
        model=str(raw["modelo"]),
        client_id=str(raw["clienteId"]),
        entry_odometer=entry_odometer,
        current_odometer=int(raw.get("kmAtual", entry_odometer)),
        odometer_history=history,
        last_maintenance_date_iso=str(raw.get("dataUltimaManutencao") or ""),
        next_maintenance_date_iso=_optional_str(raw.get("dataProximaManutencao")),
        notes=_optional_str(raw.get("notas")),
        year=_optional_str(raw.get("ano")),
        make=_optional_str(raw.get("marca")),
    )


def serialize_part(record: PartRow) -> Dict[str, Any]:
    return {
        "id": record.part_id,
        "nomePeca": record.name,
        "quantidadeAtual": record.quantity,
        "quantidadeMinima": record.minimum_quantity,
        "valorUnitario": money_to_json(record.unit_price),
    }


def deserialize_part(raw: Mapping[str, Any]) -> PartRow:
    return PartRow(
        part_id=str(raw["id"]),
        name=str(raw["nomePeca"]),
        quantity=int(raw["quantidadeAtual"]),
        minimum_quantity=int(raw.get("quantidadeMinima", 0)),
        unit_price=money_from_json(raw.get("valorUnitario")),
    )


def serialize_used_part(record: UsedPart) -> Dict[str, Any]:
    return {
        "partId": record.part_id,
        "nomePeca": record.name,
        "quantidade": record.quantity,
        "valorUnitarioSnapshot": money_to_json(record.unit_price_snapshot),
    }


def deserialize_used_part(raw: Mapping[str, Any]) -> UsedPart:
    return UsedPart(
        part_id=str(raw["partId"]),
        name=str(raw["nomePeca"]),
        quantity=int(raw["quantidade"]),
        unit_price_snapshot=money_from_json(raw["valorUnitarioSnapshot"]),
    )


def serialize_service_item(record: ServiceItem) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"nome": record.name, "valor": money_to_json(record.price)}
    if record.item_id is not None:
        payload["id"] = record.item_id
    return payload


def deserialize_service_item(raw: Mapping[str, Any]) -> ServiceItem:
    return ServiceItem(
        name=str(raw["nome"]),
        price=money_from_json(raw["valor"]),
        item_id=_optional_str(raw.get("id")),
    )


def serialize_service_order(record: ServiceOrderRow) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": record.order_id,
        "clienteId": record.client_id,
        "veiculoId": record.vehicle_id,
        "kmNoServico": record.odometer,
        "pecasUsadas": [serialize_used_part(item) for item in record.used_parts],
        "servicos": [serialize_service_item(item) for item in record.services],
        "valorTotal": money_to_json(record.total),
        "data": record.date_iso,
        "status": record.status,
    }
    if record.mechanic is not None:
        payload["mecanico"] = record.mechanic
    if record.notes is not None:
        payload["notas"] = record.notes
    return payload


def deserialize_service_order(raw: Mapping[str, Any]) -> ServiceOrderRow:
    """Convert a storage document into a :class:`ServiceOrderRow`.

    Documents from early browser builds lack ``kmNoServico`` and ``servicos``;
    both default to empty values rather than failing the whole collection.
    """

    return ServiceOrderRow(
        order_id=str(raw["id"]),
        client_id=str(raw["clienteId"]),
        vehicle_id=str(raw["veiculoId"]),
        odometer=int(raw.get("kmNoServico") or 0),
        used_parts=tuple(deserialize_used_part(item) for item in raw.get("pecasUsadas") or []),
        services=tuple(deserialize_service_item(item) for item in raw.get("servicos") or []),
        total=money_from_json(raw.get("valorTotal")),
        date_iso=str(raw["data"]),
        status=str(raw.get("status") or OrderStatus.COMPLETED.value),
        mechanic=_optional_str(raw.get("mecanico")),
        notes=_optional_str(raw.get("notas")),
    )


def serialize_maintenance_rule(record: MaintenanceRuleRow) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": record.rule_id,
        "nomeServico": record.service_name,
        "intervaloMeses": record.interval_months,
    }
    if record.vehicle_id is not None:
        payload["veiculoId"] = record.vehicle_id
    return payload


def deserialize_maintenance_rule(raw: Mapping[str, Any]) -> MaintenanceRuleRow:
    return MaintenanceRuleRow(
        rule_id=str(raw["id"]),
        service_name=str(raw["nomeServico"]),
        interval_months=int(raw["intervaloMeses"]),
        vehicle_id=_optional_str(raw.get("veiculoId")),
    )


def serialize_transaction(record: TransactionRow) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": record.transaction_id,
        "descricao": record.description,
        "tipo": record.transaction_type,
        "valor": money_to_json(record.amount),
        "data": record.date_iso,
        "categoria": record.category,
    }
    if record.reference_id is not None:
        payload["referenciaId"] = record.reference_id
    return payload


def deserialize_transaction(raw: Mapping[str, Any]) -> TransactionRow:
    return TransactionRow(
        transaction_id=str(raw["id"]),
        description=str(raw.get("descricao") or ""),
        transaction_type=str(raw["tipo"]),
        amount=money_from_json(raw["valor"]),
        date_iso=str(raw["data"]),
        category=str(raw.get("categoria") or TransactionCategory.OTHER.value),
        reference_id=_optional_str(raw.get("referenciaId")),
    )


def serialize_audit_log(record: AuditLogRow) -> Dict[str, Any]:
    return {
        "id": record.log_id,
        "timestamp": record.timestamp_iso,
        "acao": record.action,
        "entidade": record.entity,
        "detalhes": record.details,
    }


def deserialize_audit_log(raw: Mapping[str, Any]) -> AuditLogRow:
    return AuditLogRow(
        log_id=str(raw["id"]),
        timestamp_iso=str(raw["timestamp"]),
        action=str(raw["acao"]),
        entity=str(raw["entidade"]),
        details=str(raw.get("detalhes") or ""),
    )
