"""Integration tests describing end-to-end AutoPrime workflows.

Each scenario runs against a real data workbook created by the setup script,
reloading the context from disk between steps the way separate CLI
invocations would.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from autoprime import core_logic, documents
from autoprime.records import ServiceItem

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)
EIGHT_MONTHS_AGO = datetime(2023, 10, 15, 12, 0, tzinfo=UTC)


def _register_vehicle(context, *, name="Ana Souza", plate="ABC1D23"):
    client = core_logic.add_client(context, name=name, phone="11 99999-0000", timestamp=EIGHT_MONTHS_AGO)
    vehicle = core_logic.add_vehicle(
        context,
        client_id=client.client_id,
        plate=plate,
        model="Onix",
        entry_odometer=20_000,
        timestamp=EIGHT_MONTHS_AGO,
    )
    return client, vehicle


def test_service_order_lifecycle_survives_reload(runtime_context, tmp_path):
    """Register, service, reload, report, and export a service order."""

    context = runtime_context
    client, vehicle = _register_vehicle(context)
    part = core_logic.add_part(
        context, name="Filtro de óleo", quantity=4, minimum_quantity=2, unit_price=Decimal("35"),
        timestamp=EIGHT_MONTHS_AGO,
    )

    context = core_logic.refresh_context(context)

    used = core_logic.build_used_part(context, part.part_id, 3)
    order = core_logic.add_service_order(
        context,
        core_logic.ServiceOrderCommand(
            client_id=client.client_id,
            vehicle_id=vehicle.vehicle_id,
            odometer=25_000,
            used_parts=[used],
            services=[ServiceItem("Troca de Óleo", Decimal("90"))],
            timestamp=NOW,
        ),
    )

    context = core_logic.refresh_context(context)
    store = context.store

    assert store.service_orders.get(order.order_id).total == Decimal("195")
    assert store.parts.get(part.part_id).quantity == 1
    assert store.vehicles.get(vehicle.vehicle_id).current_odometer == 25_000

    alerts = core_logic.current_alerts(context, now=NOW)
    assert f"stock-{part.part_id}" in {alert.alert_id for alert in alerts}
    assert not any(alert.alert_id.startswith("maint-crit-") for alert in alerts)

    summary = core_logic.monthly_summary(context, 2024, 6)
    assert summary.income == Decimal("195")

    document = documents.generate_service_order_document(context, order.order_id)
    output = documents.render_service_order_workbook(document, tmp_path / "os.xlsx")
    assert output.exists()

    actions = [(entry.action, entry.entity) for entry in core_logic.list_audit_log(context, newest_first=False)]
    assert actions == [
        ("CRIACAO", "CLIENTE"),
        ("CRIACAO", "VEICULO"),
        ("CRIACAO", "ESTOQUE"),
        ("CRIACAO", "OS"),
    ]


def test_overdue_oil_change_is_flagged(runtime_context):
    """An oil change done eight months ago breaks the seeded six-month rule."""

    context = runtime_context
    client, vehicle = _register_vehicle(context)
    core_logic.add_service_order(
        context,
        core_logic.ServiceOrderCommand(
            client_id=client.client_id,
            vehicle_id=vehicle.vehicle_id,
            odometer=21_000,
            services=[ServiceItem("Troca de Óleo", Decimal("90"))],
            timestamp=EIGHT_MONTHS_AGO,
        ),
    )

    context = core_logic.refresh_context(context)
    alerts = core_logic.current_alerts(context, now=NOW)

    critical = [alert for alert in alerts if alert.alert_id == f"maint-crit-{vehicle.vehicle_id}-rule-1"]
    assert len(critical) == 1
    assert critical[0].client_name == "Ana Souza"
    assert alerts == core_logic.current_alerts(context, now=NOW)


def test_client_cascade_leaves_no_orphans(runtime_context):
    """Deleting a client removes its vehicles, their orders, and the order income."""

    context = runtime_context
    client, vehicle = _register_vehicle(context)
    other_client, other_vehicle = _register_vehicle(context, name="Bruno", plate="XYZ9K88")
    orders = [
        core_logic.add_service_order(
            context,
            core_logic.ServiceOrderCommand(
                client_id=owner.client_id,
                vehicle_id=car.vehicle_id,
                odometer=30_000,
                services=[ServiceItem("Alinhamento", Decimal("70"))],
                timestamp=NOW,
            ),
        )
        for owner, car in ((client, vehicle), (other_client, other_vehicle))
    ]

    assert core_logic.delete_client(context, client.client_id)
    context = core_logic.refresh_context(context)
    store = context.store

    assert all(v.client_id != client.client_id for v in store.vehicles)
    vehicle_ids = {v.vehicle_id for v in store.vehicles}
    assert all(order.vehicle_id in vehicle_ids for order in store.service_orders)
    order_ids = {order.order_id for order in store.service_orders}
    assert order_ids == {orders[1].order_id}
    income = [t for t in store.transactions if t.category == "OS"]
    assert {t.reference_id for t in income} == order_ids

    metrics = core_logic.current_metrics(context, now=NOW)
    assert metrics.total_revenue == sum((t.amount for t in income), Decimal("0"))


def test_deleted_order_keeps_stock_depletion(runtime_context):
    """Removing an order drops its income but does not restock parts."""

    context = runtime_context
    client, vehicle = _register_vehicle(context)
    part = core_logic.add_part(
        context, name="Pastilha", quantity=10, minimum_quantity=1, unit_price=Decimal("50")
    )
    order = core_logic.add_service_order(
        context,
        core_logic.ServiceOrderCommand(
            client_id=client.client_id,
            vehicle_id=vehicle.vehicle_id,
            odometer=21_000,
            used_parts=[core_logic.build_used_part(context, part.part_id, 4)],
            timestamp=NOW,
        ),
    )

    core_logic.delete_service_order(context, order.order_id)
    context = core_logic.refresh_context(context)

    assert context.store.parts.get(part.part_id).quantity == 6
    assert [t.category for t in context.store.transactions] == ["ESTOQUE"]
    assert core_logic.current_metrics(context, now=NOW).completed_orders == 0
