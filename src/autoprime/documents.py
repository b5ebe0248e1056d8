"""Printable service-order documents.

The exporter only formats: it takes one finalized order plus the client and
vehicle it references and lays them out. It never mutates the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Optional, Tuple

import openpyxl
from openpyxl.styles import Alignment, Font

from . import log
from .analytics import client_label, parse_iso
from .constants import REMOVED_VEHICLE_LABEL
from .core_logic import RuntimeContext, get_service_order, short_id
from .records import ClientRow, ServiceItem, ServiceOrderRow, UsedPart, VehicleRow


PLACEHOLDER = "N/A"
DOCUMENT_SHEET = "Ordem de Serviço"
NO_SERVICES_TEXT = "Nenhum serviço listado"
NO_PARTS_TEXT = "Nenhuma peça utilizada"
SIGNATURE_LINE = "_____________________________________"


@dataclass(frozen=True)
class ServiceOrderDocument:
    """Everything a printed service order shows, already resolved to text."""

    shop_name: str
    order_id: str
    date_text: str
    status: str
    client_name: str
    client_phone: str
    client_email: str
    vehicle_model: str
    vehicle_plate: str
    odometer: int
    services: Tuple[ServiceItem, ...]
    used_parts: Tuple[UsedPart, ...]
    total: Decimal
    notes: Optional[str] = None

    @property
    def title(self) -> str:
        return f"Ordem de Serviço #{short_id(self.order_id)}"


def format_money(amount: Decimal) -> str:
    return f"R$ {amount.quantize(Decimal('0.01'))}"


def _date_text(date_iso: str) -> str:
    moment = parse_iso(date_iso)
    return moment.strftime("%d/%m/%Y") if moment is not None else date_iso


def build_service_order_document(
    order: ServiceOrderRow,
    client: Optional[ClientRow],
    vehicle: Optional[VehicleRow],
    *,
    shop_name: str,
) -> ServiceOrderDocument:
    """Resolve an order and its references into a :class:`ServiceOrderDocument`.

    A client or vehicle that no longer exists is named by the removed-entity
    labels and its other fields print as ``N/A``; the order's own snapshot
    lines are always complete.
    """

    return ServiceOrderDocument(
        shop_name=shop_name,
        order_id=order.order_id,
        date_text=_date_text(order.date_iso),
        status=order.status,
        client_name=client_label(client) or PLACEHOLDER,
        client_phone=(client.phone if client else "") or PLACEHOLDER,
        client_email=(client.email if client else "") or PLACEHOLDER,
        vehicle_model=(vehicle.model if vehicle else REMOVED_VEHICLE_LABEL) or PLACEHOLDER,
        vehicle_plate=(vehicle.plate if vehicle else "") or PLACEHOLDER,
        odometer=order.odometer,
        services=tuple(order.services),
        used_parts=tuple(order.used_parts),
        total=order.total,
        notes=order.notes,
    )


def generate_service_order_document(context: RuntimeContext, order_id: str) -> ServiceOrderDocument:
    """Build the printable document for ``order_id``.

    Raises:
        MissingReferenceError: If the order does not exist.
    """

    order = get_service_order(context, order_id)
    document = build_service_order_document(
        order,
        context.store.clients.get(order.client_id),
        context.store.vehicles.get(order.vehicle_id),
        shop_name=context.settings.shop_name,
    )
    log.info("Generated document for service order '%s'", order_id)
    return document


def render_service_order_workbook(document: ServiceOrderDocument, destination: Path) -> Path:
    """Write ``document`` as a single-sheet printable workbook.

    Args:
        document (ServiceOrderDocument): The resolved order.
        destination (Path): Target ``.xlsx`` path; parent folders are created.

    Returns:
        Path: The resolved destination.
    """

    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = DOCUMENT_SHEET
    bold_font = Font(bold=True)
    title_font = Font(bold=True, size=14)

    def heading(text: str) -> None:
        sheet.append([])
        sheet.append([text])
        sheet.cell(row=sheet.max_row, column=1).font = bold_font

    def header_row(*labels: str) -> None:
        sheet.append(list(labels))
        for column in range(1, len(labels) + 1):
            sheet.cell(row=sheet.max_row, column=column).font = bold_font

    sheet.append([document.shop_name])
    sheet.cell(row=1, column=1).font = title_font
    sheet.append([document.title])
    sheet.append([f"Ordem de Serviço: {document.order_id}"])
    sheet.append([f"Data: {document.date_text} | Status: {document.status}"])

    heading("Cliente")
    sheet.append(["Nome", document.client_name])
    sheet.append(["Tel", document.client_phone])
    sheet.append(["Email", document.client_email])

    heading("Veículo")
    sheet.append(["Modelo", document.vehicle_model])
    sheet.append(["Placa", document.vehicle_plate])
    sheet.append(["KM no Serviço", document.odometer])

    heading("Serviços Realizados")
    header_row("Serviço", "Valor")
    for item in document.services:
        sheet.append([item.name, format_money(item.price)])
    if not document.services:
        sheet.append([NO_SERVICES_TEXT])

    heading("Peças Utilizadas")
    header_row("Peça", "Qtd", "Unit.", "Total")
    for used in document.used_parts:
        sheet.append([used.name, used.quantity, format_money(used.unit_price_snapshot), format_money(used.subtotal)])
    if not document.used_parts:
        sheet.append([NO_PARTS_TEXT])

    sheet.append([])
    sheet.append(["Valor Total", format_money(document.total)])
    total_row = sheet.max_row
    for column in (1, 2):
        sheet.cell(row=total_row, column=column).font = bold_font
    sheet.cell(row=total_row, column=2).alignment = Alignment(horizontal="right")

    if document.notes:
        sheet.append([])
        sheet.append(["Observações", document.notes])

    sheet.append([])
    sheet.append([])
    sheet.append([SIGNATURE_LINE])
    sheet.append(["Assinatura do Cliente"])

    sheet.column_dimensions["A"].width = 40
    for letter in ("B", "C", "D"):
        sheet.column_dimensions[letter].width = 16

    workbook.save(destination)
    log.info("Rendered service order '%s' to '%s'", document.order_id, destination)
    return destination
