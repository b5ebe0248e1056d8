"""Tests for the printable service-order documents."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import openpyxl
import pytest

from autoprime import core_logic, documents
from autoprime.constants import REMOVED_CLIENT_LABEL, REMOVED_VEHICLE_LABEL
from autoprime.records import ServiceItem, ServiceOrderRow, UsedPart

WHEN = datetime(2024, 3, 5, 14, 30, tzinfo=UTC)


@pytest.fixture
def finished_order(context):
    client = core_logic.add_client(context, name="Ana Souza", phone="11 99999-0000")
    vehicle = core_logic.add_vehicle(
        context, client_id=client.client_id, plate="ABC1D23", model="Onix", entry_odometer=1000
    )
    part = core_logic.add_part(
        context, name="Filtro", quantity=4, minimum_quantity=1, unit_price=Decimal("30.5")
    )
    return core_logic.add_service_order(
        context,
        core_logic.ServiceOrderCommand(
            client_id=client.client_id,
            vehicle_id=vehicle.vehicle_id,
            odometer=1500,
            used_parts=[core_logic.build_used_part(context, part.part_id, 2)],
            services=[ServiceItem("Troca de Óleo", Decimal("80"))],
            timestamp=WHEN,
        ),
    )


def test_generate_document_resolves_references(context, finished_order):
    """Client and vehicle details are copied onto the document."""

    document = documents.generate_service_order_document(context, finished_order.order_id)

    assert document.shop_name == "Oficina Teste"
    assert document.client_name == "Ana Souza"
    assert document.client_email == documents.PLACEHOLDER
    assert document.vehicle_plate == "ABC1D23"
    assert document.date_text == "05/03/2024"
    assert document.total == Decimal("141")
    assert document.title.startswith("Ordem de Serviço #")


def test_generate_document_for_unknown_order_raises(context):
    with pytest.raises(core_logic.MissingReferenceError):
        documents.generate_service_order_document(context, "ghost")


def test_build_document_tolerates_missing_references():
    """Removed client and vehicle print as placeholders."""

    order = ServiceOrderRow(
        order_id="abcdef1234",
        client_id="gone",
        vehicle_id="gone",
        odometer=0,
        used_parts=(),
        services=(),
        total=Decimal("0"),
        date_iso="not a date",
    )

    document = documents.build_service_order_document(order, None, None, shop_name="Oficina")

    assert document.client_name == REMOVED_CLIENT_LABEL
    assert document.vehicle_model == REMOVED_VEHICLE_LABEL
    assert document.vehicle_plate == documents.PLACEHOLDER
    assert document.date_text == "not a date"
    assert document.title == "Ordem de Serviço #abcdef12"


def test_render_workbook_writes_lines_and_total(context, finished_order, tmp_path):
    """The rendered sheet carries every line plus the total."""

    document = documents.generate_service_order_document(context, finished_order.order_id)
    destination = documents.render_service_order_workbook(document, tmp_path / "out" / "os.xlsx")

    sheet = openpyxl.load_workbook(destination)[documents.DOCUMENT_SHEET]
    values = [row for row in sheet.iter_rows(values_only=True)]
    flat = [cell for row in values for cell in row if cell is not None]

    assert sheet["A1"].value == "Oficina Teste"
    assert sheet["A1"].font.bold
    assert "Troca de Óleo" in flat
    assert ("Filtro", 2, "R$ 30.50", "R$ 61.00") in [row[:4] for row in values]
    assert ("Valor Total", "R$ 141.00") in [row[:2] for row in values]
    assert "Assinatura do Cliente" in flat


def test_render_workbook_marks_empty_sections(tmp_path):
    """Orders without lines say so explicitly."""

    document = documents.ServiceOrderDocument(
        shop_name="Oficina",
        order_id="o1",
        date_text="01/01/2024",
        status="CONCLUIDA",
        client_name="A",
        client_phone="B",
        client_email="C",
        vehicle_model="D",
        vehicle_plate="E",
        odometer=1,
        services=(),
        used_parts=(),
        total=Decimal("0"),
    )
    destination = documents.render_service_order_workbook(document, tmp_path / "empty.xlsx")

    flat = [
        cell
        for row in openpyxl.load_workbook(destination).active.iter_rows(values_only=True)
        for cell in row
        if cell is not None
    ]
    assert documents.NO_SERVICES_TEXT in flat
    assert documents.NO_PARTS_TEXT in flat


def test_format_money_uses_two_decimals():
    assert documents.format_money(Decimal("7")) == "R$ 7.00"
    assert documents.format_money(UsedPart("p", "x", 3, Decimal("1.1")).subtotal) == "R$ 3.30"
