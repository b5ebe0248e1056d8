"""Unit tests for the derived views: alerts, metrics, and ledger summaries."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from autoprime import analytics
from autoprime.constants import REMOVED_CLIENT_LABEL
from autoprime.records import (
    ClientRow,
    MaintenanceRuleRow,
    PartRow,
    ServiceItem,
    ServiceOrderRow,
    TransactionRow,
    VehicleRow,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def _client(client_id="c1", name="Ana Souza", email="ana@example.com"):
    return ClientRow(client_id, name, "11 99999-0000", email, True, "2024-01-01T00:00:00+00:00")


def _vehicle(vehicle_id="v1", client_id="c1", last_maintenance="2024-01-01T00:00:00+00:00"):
    return VehicleRow(
        vehicle_id=vehicle_id,
        plate="ABC1D23",
        model="Onix",
        client_id=client_id,
        entry_odometer=10_000,
        current_odometer=10_000,
        odometer_history=(),
        last_maintenance_date_iso=last_maintenance,
    )


def _order(order_id, date_iso, services=(), total="0", vehicle_id="v1", status="CONCLUIDA"):
    return ServiceOrderRow(
        order_id=order_id,
        client_id="c1",
        vehicle_id=vehicle_id,
        odometer=10_000,
        used_parts=(),
        services=tuple(ServiceItem(name, Decimal("1")) for name in services),
        total=Decimal(total),
        date_iso=date_iso,
        status=status,
    )


def _transaction(transaction_id, transaction_type, amount, date_iso):
    return TransactionRow(transaction_id, "x", transaction_type, Decimal(amount), date_iso, "OUTROS")


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------


def test_parse_iso_handles_browser_and_naive_formats():
    """Z suffixes and naive values both come back as aware UTC datetimes."""

    assert analytics.parse_iso("2024-03-01T10:00:00.000Z") == datetime(2024, 3, 1, 10, tzinfo=UTC)
    assert analytics.parse_iso("2024-03-01") == datetime(2024, 3, 1, tzinfo=UTC)
    assert analytics.parse_iso("garbage") is None
    assert analytics.parse_iso("") is None


@pytest.mark.parametrize(
    ("start", "months", "expected"),
    [
        (datetime(2024, 1, 31, tzinfo=UTC), 1, datetime(2024, 2, 29, tzinfo=UTC)),
        (datetime(2023, 1, 31, tzinfo=UTC), 1, datetime(2023, 2, 28, tzinfo=UTC)),
        (datetime(2024, 11, 15, tzinfo=UTC), 3, datetime(2025, 2, 15, tzinfo=UTC)),
        (datetime(2024, 6, 15, tzinfo=UTC), 48, datetime(2028, 6, 15, tzinfo=UTC)),
    ],
)
def test_add_months_clamps_to_month_end(start, months, expected):
    """Month arithmetic never overflows into the following month."""

    assert analytics.add_months(start, months) == expected


def test_days_until_rounds_up_partial_days():
    """A due date half a day away counts as one day left."""

    assert analytics.days_until(datetime(2024, 6, 16, tzinfo=UTC), NOW) == 1
    assert analytics.days_until(datetime(2024, 6, 14, tzinfo=UTC), NOW) == -1


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


def test_stock_alert_only_below_minimum():
    """Parts exactly at their minimum do not alert."""

    parts = [
        PartRow("p1", "Filtro", 1, 2, Decimal("10")),
        PartRow("p2", "Vela", 2, 2, Decimal("10")),
    ]

    alerts = analytics.stock_alerts(parts)

    assert [alert.alert_id for alert in alerts] == ["stock-p1"]
    assert alerts[0].severity == "critical"
    assert alerts[0].message == "Estoque Baixo: Filtro (1/2)"


def test_overdue_oil_change_is_critical():
    """An oil change done eight months ago on a six-month rule is overdue."""

    rule = MaintenanceRuleRow("rule-1", "Troca de Óleo", 6)
    order = _order("o1", "2023-10-15T12:00:00+00:00", services=["Troca de Óleo"])

    alerts = analytics.maintenance_alerts([_vehicle()], [rule], [order], [_client()], now=NOW)

    assert len(alerts) == 1
    assert alerts[0].alert_id == "maint-crit-v1-rule-1"
    assert alerts[0].severity == "critical"
    assert alerts[0].client_name == "Ana Souza"


def test_upcoming_maintenance_is_warning():
    """A due date inside the warning window produces a warning with the day count."""

    rule = MaintenanceRuleRow("rule-2", "Alinhamento", 12)
    vehicle = _vehicle(last_maintenance="2023-07-01T12:00:00+00:00")

    alerts = analytics.maintenance_alerts([vehicle], [rule], [], [_client()], now=NOW, warning_window_days=30)

    assert [alert.alert_id for alert in alerts] == ["maint-warn-v1-rule-2"]
    assert "vence em 16 dias" in alerts[0].message


@pytest.mark.parametrize(
    "offset, expected_id, expected_days",
    [
        (timedelta(days=-1), "maint-crit-v1-r", None),
        (timedelta(hours=-2), "maint-warn-v1-r", 0),
        (timedelta(0), "maint-warn-v1-r", 0),
        (timedelta(days=30), "maint-warn-v1-r", 30),
        (timedelta(days=30, hours=1), None, None),
        (timedelta(days=31), None, None),
    ],
)
def test_maintenance_alert_thresholds(offset, expected_id, expected_days):
    """Overdue is strictly past due; partial days count as a whole day."""

    rule = MaintenanceRuleRow("r", "Troca de Óleo", 1)
    vehicle = _vehicle(last_maintenance="2024-01-10T12:00:00+00:00")
    due = datetime(2024, 2, 10, 12, 0, tzinfo=UTC)

    alerts = analytics.maintenance_alerts([vehicle], [rule], [], [_client()], now=due - offset)

    assert [alert.alert_id for alert in alerts] == ([expected_id] if expected_id else [])
    if expected_days is not None:
        assert f"vence em {expected_days} dias" in alerts[0].message


def test_distant_maintenance_produces_nothing():
    """Due dates beyond the window stay silent."""

    rule = MaintenanceRuleRow("rule-3", "Correia Dentada", 48)

    assert analytics.maintenance_alerts([_vehicle()], [rule], [], [_client()], now=NOW) == []


def test_latest_matching_order_wins_over_older_ones():
    """The most recent order performing the service sets the base date."""

    rule = MaintenanceRuleRow("rule-1", "Troca de Óleo", 6)
    orders = [
        _order("old", "2023-01-01T00:00:00+00:00", services=["Troca de Óleo"]),
        _order("new", "2024-05-01T00:00:00+00:00", services=["Troca de Óleo"]),
        _order("other", "2024-06-01T00:00:00+00:00", services=["Lavagem"]),
    ]

    assert analytics.last_matching_order(orders, "v1", "Troca de Óleo").order_id == "new"
    assert analytics.maintenance_alerts([_vehicle()], [rule], orders, [_client()], now=NOW) == []


def test_vehicle_scoped_rule_ignores_other_vehicles():
    """A rule pinned to one vehicle is not evaluated for the rest."""

    rule = MaintenanceRuleRow("r", "Troca de Óleo", 1, vehicle_id="v2")
    vehicles = [_vehicle("v1"), _vehicle("v2")]

    alerts = analytics.maintenance_alerts(vehicles, [rule], [], [_client()], now=NOW)

    assert [alert.vehicle_id for alert in alerts] == ["v2"]


def test_alert_for_vehicle_of_removed_client_uses_placeholder():
    """A dangling owner reference is annotated, not an error."""

    rule = MaintenanceRuleRow("rule-1", "Troca de Óleo", 1)

    alerts = analytics.maintenance_alerts([_vehicle(client_id="gone")], [rule], [], [], now=NOW)

    assert alerts[0].client_name == REMOVED_CLIENT_LABEL


def test_compute_alerts_is_idempotent():
    """Recomputing over unchanged data yields identical alerts."""

    parts = [PartRow("p1", "Filtro", 0, 1, Decimal("1"))]
    rules = [MaintenanceRuleRow("rule-1", "Troca de Óleo", 1)]
    args = (parts, [_vehicle()], rules, [], [_client()])

    first = analytics.compute_alerts(*args, now=NOW)
    second = analytics.compute_alerts(*args, now=NOW)

    assert first == second
    assert [alert.alert_type for alert in first] == ["ESTOQUE", "MANUTENCAO"]


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def test_compute_metrics_aggregates_completed_orders():
    """Totals, month revenue, and average ticket come from completed orders."""

    orders = [
        _order("o1", "2024-06-01T00:00:00+00:00", services=["Troca de Óleo"], total="100"),
        _order("o2", "2024-05-01T00:00:00+00:00", services=["Troca de Óleo", "Alinhamento"], total="50"),
        _order("o3", "2024-06-02T00:00:00+00:00", total="999", status="ABERTA"),
    ]

    metrics = analytics.compute_metrics(orders, now=NOW)

    assert metrics.total_revenue == Decimal("150")
    assert metrics.month_revenue == Decimal("100")
    assert metrics.completed_orders == 2
    assert metrics.open_orders == 1
    assert metrics.average_ticket == Decimal("75")
    assert metrics.top_services[0] == analytics.ServiceFrequency("Troca de Óleo", 2)


def test_compute_metrics_without_orders_is_zero():
    """An empty shop has a zero average ticket, not a division error."""

    metrics = analytics.compute_metrics([], now=NOW)

    assert metrics.average_ticket == Decimal("0")
    assert metrics.top_services == ()


def test_top_services_limits_to_five():
    """Only the five most frequent services are reported."""

    orders = [_order(f"o{i}", "2024-06-01", services=[f"S{i}"] * (10 - i)) for i in range(7)]

    ranking = analytics.top_services(orders)

    assert [entry.name for entry in ranking] == ["S0", "S1", "S2", "S3", "S4"]


def test_top_services_breaks_ties_by_first_appearance():
    """Services with equal counts keep the order in which they were first seen."""

    orders = [
        _order("o1", "2024-06-01", services=["Lavagem", "Alinhamento"]),
        _order("o2", "2024-06-02", services=["Balanceamento", "Troca de Óleo"]),
        _order("o3", "2024-06-03", services=["Troca de Óleo", "Alinhamento", "Lavagem"]),
    ]

    ranking = analytics.top_services(orders, limit=3)

    assert [(entry.name, entry.count) for entry in ranking] == [
        ("Lavagem", 2),
        ("Alinhamento", 2),
        ("Troca de Óleo", 2),
    ]


# ---------------------------------------------------------------------------
# Ledger views and search
# ---------------------------------------------------------------------------


def test_summarize_month_balances_income_and_expense():
    """Only entries of the requested month are summed."""

    transactions = [
        _transaction("t1", "RECEITA", "300", "2024-06-10T00:00:00+00:00"),
        _transaction("t2", "DESPESA", "120.50", "2024-06-12T00:00:00+00:00"),
        _transaction("t3", "RECEITA", "999", "2024-05-31T23:59:00+00:00"),
    ]

    summary = analytics.summarize_month(transactions, 2024, 6)

    assert summary.income == Decimal("300")
    assert summary.expense == Decimal("120.50")
    assert summary.balance == Decimal("179.50")
    assert summary.transaction_count == 2
    assert [t.transaction_id for t in analytics.transactions_for_month(transactions, 2024, 6)] == ["t2", "t1"]


def test_search_clients_matches_name_and_email():
    """Search is case-insensitive across name and email."""

    clients = [_client("c1", "Ana Souza", "ana@x.com"), _client("c2", "Bruno", "contato@oficina.com")]

    assert [c.client_id for c in analytics.search_clients(clients, "SOUZA")] == ["c1"]
    assert [c.client_id for c in analytics.search_clients(clients, "oficina")] == ["c2"]
    assert len(analytics.search_clients(clients, "  ")) == 2
