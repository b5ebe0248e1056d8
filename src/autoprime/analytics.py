"""Derived-state engine for the AutoPrime shop.

Everything in this module is a pure function of the collections handed in:
nothing is cached, nothing is persisted, and no input sequence is mutated.
Callers recompute alerts and metrics from scratch whenever they need them,
which keeps the results trivially consistent with the entity store.
"""

from __future__ import annotations

import calendar
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from . import log
from .constants import (
    DEFAULT_WARNING_WINDOW_DAYS,
    REMOVED_CLIENT_LABEL,
    TOP_SERVICES_LIMIT,
    AlertSeverity,
    AlertType,
    OrderStatus,
    TransactionType,
)
from .records import ClientRow, MaintenanceRuleRow, PartRow, ServiceOrderRow, TransactionRow, VehicleRow


SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class Alert:
    """A derived notice shown on the dashboard.

    ``alert_id`` is derived from the entities involved, so recomputing alerts
    over unchanged data yields identical records.
    """

    alert_id: str
    alert_type: str
    severity: str
    message: str
    vehicle_id: Optional[str] = None
    rule_id: Optional[str] = None
    client_name: Optional[str] = None
    client_phone: Optional[str] = None


@dataclass(frozen=True)
class ServiceFrequency:
    name: str
    count: int


@dataclass(frozen=True)
class DashboardMetrics:
    """Revenue aggregates computed from the service-order collection."""

    total_revenue: Decimal
    month_revenue: Decimal
    open_orders: int
    completed_orders: int
    average_ticket: Decimal
    top_services: Tuple[ServiceFrequency, ...]


@dataclass(frozen=True)
class MonthlySummary:
    """Income, expense, and balance of the ledger for one calendar month."""

    year: int
    month: int
    income: Decimal
    expense: Decimal
    balance: Decimal
    transaction_count: int


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Accepts the ``Z`` suffix written by browsers and date-only strings. Naive
    values are taken to be UTC. Empty or unparsable input returns ``None``.
    """

    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        log.debug("Unparsable timestamp '%s'", value)
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift ``moment`` by whole calendar months, clamping the day of month.

    31 January plus one month is the last day of February.
    """

    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def days_until(target: datetime, now: datetime) -> int:
    """Whole days from ``now`` to ``target``, rounded up (ceiling division)."""

    return math.ceil((target - now).total_seconds() / SECONDS_PER_DAY)


def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(UTC)


def applicable_rules(rules: Iterable[MaintenanceRuleRow], vehicle_id: str) -> List[MaintenanceRuleRow]:
    """Rules that are global or scoped to exactly ``vehicle_id``."""

    return [rule for rule in rules if rule.vehicle_id is None or rule.vehicle_id == vehicle_id]


def maintenance_interval_for(
    rules: Iterable[MaintenanceRuleRow],
    vehicle_id: str,
    service_names: Iterable[str],
    default_months: int,
) -> int:
    """Interval in months until the next maintenance after a service visit.

    The shortest interval among the rules applicable to the vehicle whose
    service name was performed wins; ``default_months`` applies otherwise.
    """

    performed = set(service_names)
    intervals = [
        rule.interval_months
        for rule in applicable_rules(rules, vehicle_id)
        if rule.service_name in performed
    ]
    return min(intervals) if intervals else default_months


def stock_alerts(parts: Iterable[PartRow]) -> List[Alert]:
    """Emit one critical alert per part whose quantity is below its minimum."""

    alerts: List[Alert] = []
    for part in parts:
        if part.quantity < part.minimum_quantity:
            alerts.append(
                Alert(
                    alert_id=f"stock-{part.part_id}",
                    alert_type=AlertType.STOCK.value,
                    severity=AlertSeverity.CRITICAL.value,
                    message=f"Estoque Baixo: {part.name} ({part.quantity}/{part.minimum_quantity})",
                )
            )
    return alerts


def last_matching_order(
    orders: Iterable[ServiceOrderRow],
    vehicle_id: str,
    service_name: str,
) -> Optional[ServiceOrderRow]:
    """Most recent completed order of ``vehicle_id`` that performed ``service_name``.

    Orders whose date cannot be parsed are ignored. Among orders sharing the
    same date the earliest inserted one is returned.
    """

    latest: Optional[ServiceOrderRow] = None
    latest_date: Optional[datetime] = None
    for order in orders:
        if order.vehicle_id != vehicle_id or order.status != OrderStatus.COMPLETED.value:
            continue
        if not any(item.name == service_name for item in order.services):
            continue
        order_date = parse_iso(order.date_iso)
        if order_date is None:
            continue
        if latest_date is None or order_date > latest_date:
            latest, latest_date = order, order_date
    return latest


def maintenance_alerts(
    vehicles: Iterable[VehicleRow],
    rules: Sequence[MaintenanceRuleRow],
    orders: Sequence[ServiceOrderRow],
    clients: Iterable[ClientRow],
    *,
    now: Optional[datetime] = None,
    warning_window_days: int = DEFAULT_WARNING_WINDOW_DAYS,
) -> List[Alert]:
    """Evaluate every applicable (vehicle, rule) pair against service history.

    For each pair the base date is the date of the most recent completed order
    that performed the rule's service, else the vehicle's last maintenance
    date, else ``now``. The next due date is the base plus the rule interval.
    A pair already past due yields a critical alert; one due within
    ``warning_window_days`` yields a warning; anything later yields nothing.

    Args:
        vehicles: Vehicles to evaluate.
        rules: Maintenance rules; a rule without ``vehicle_id`` is global.
        orders: Full service-order history.
        clients: Clients used to annotate alerts with name and phone.
        now (datetime | None): Reference moment, defaulting to the current UTC
            time.
        warning_window_days (int): Days before the due date at which a warning
            starts being emitted.

    Returns:
        list[Alert]: Alerts in vehicle order, then rule order.
    """

    moment = _now(now)
    clients_by_id: Dict[str, ClientRow] = {client.client_id: client for client in clients}
    alerts: List[Alert] = []
    for vehicle in vehicles:
        owner = clients_by_id.get(vehicle.client_id)
        client_name = client_label(owner)
        client_phone = owner.phone if owner is not None else ""
        for rule in applicable_rules(rules, vehicle.vehicle_id):
            last_order = last_matching_order(orders, vehicle.vehicle_id, rule.service_name)
            base_date = parse_iso(last_order.date_iso) if last_order is not None else None
            if base_date is None:
                base_date = parse_iso(vehicle.last_maintenance_date_iso) or moment
            next_due = add_months(base_date, rule.interval_months)
            remaining = days_until(next_due, moment)

            if remaining < 0:
                alert_id = f"maint-crit-{vehicle.vehicle_id}-{rule.rule_id}"
                severity = AlertSeverity.CRITICAL.value
                message = f"{rule.service_name} VENCIDO - {vehicle.model} ({vehicle.plate})"
            elif remaining <= warning_window_days:
                alert_id = f"maint-warn-{vehicle.vehicle_id}-{rule.rule_id}"
                severity = AlertSeverity.WARNING.value
                message = f"{rule.service_name} vence em {remaining} dias - {vehicle.model}"
            else:
                continue

            alerts.append(
                Alert(
                    alert_id=alert_id,
                    alert_type=AlertType.MAINTENANCE.value,
                    severity=severity,
                    message=message,
                    vehicle_id=vehicle.vehicle_id,
                    rule_id=rule.rule_id,
                    client_name=client_name,
                    client_phone=client_phone,
                )
            )
    return alerts


def compute_alerts(
    parts: Iterable[PartRow],
    vehicles: Iterable[VehicleRow],
    rules: Sequence[MaintenanceRuleRow],
    orders: Sequence[ServiceOrderRow],
    clients: Iterable[ClientRow],
    *,
    now: Optional[datetime] = None,
    warning_window_days: int = DEFAULT_WARNING_WINDOW_DAYS,
) -> List[Alert]:
    """Stock alerts followed by maintenance alerts."""

    alerts = stock_alerts(parts)
    alerts.extend(
        maintenance_alerts(
            vehicles,
            rules,
            orders,
            clients,
            now=now,
            warning_window_days=warning_window_days,
        )
    )
    log.debug("Computed %d alert(s)", len(alerts))
    return alerts


def top_services(orders: Iterable[ServiceOrderRow], limit: int = TOP_SERVICES_LIMIT) -> Tuple[ServiceFrequency, ...]:
    """Most frequent service-line names, ties kept in first-seen order."""

    counts: Dict[str, int] = {}
    for order in orders:
        for item in order.services:
            counts[item.name] = counts.get(item.name, 0) + 1
    ranked = sorted(counts.items(), key=lambda entry: entry[1], reverse=True)
    return tuple(ServiceFrequency(name=name, count=count) for name, count in ranked[:limit])


def compute_metrics(orders: Sequence[ServiceOrderRow], *, now: Optional[datetime] = None) -> DashboardMetrics:
    """Aggregate dashboard metrics over the service-order collection.

    Args:
        orders: Every service order in the store.
        now (datetime | None): Reference moment selecting the current calendar
            month (UTC). Defaults to the current time.

    Returns:
        DashboardMetrics: Revenue totals, order counts, average ticket (zero
            when there are no completed orders) and the top five services.
    """

    moment = _now(now)
    completed = [order for order in orders if order.status == OrderStatus.COMPLETED.value]
    total_revenue = sum((order.total for order in completed), Decimal("0"))

    month_revenue = Decimal("0")
    for order in completed:
        order_date = parse_iso(order.date_iso)
        if order_date is not None and (order_date.year, order_date.month) == (moment.year, moment.month):
            month_revenue += order.total

    average_ticket = total_revenue / len(completed) if completed else Decimal("0")
    return DashboardMetrics(
        total_revenue=total_revenue,
        month_revenue=month_revenue,
        open_orders=len(orders) - len(completed),
        completed_orders=len(completed),
        average_ticket=average_ticket,
        top_services=top_services(completed),
    )


def transactions_for_month(transactions: Iterable[TransactionRow], year: int, month: int) -> List[TransactionRow]:
    """Ledger entries dated within the given UTC month, newest first."""

    selected = []
    for transaction in transactions:
        moment = parse_iso(transaction.date_iso)
        if moment is not None and moment.year == year and moment.month == month:
            selected.append((moment, transaction))
    selected.sort(key=lambda entry: entry[0], reverse=True)
    return [transaction for _, transaction in selected]


def summarize_month(transactions: Iterable[TransactionRow], year: int, month: int) -> MonthlySummary:
    """Income, expense, and balance for one calendar month of the ledger."""

    monthly = transactions_for_month(transactions, year, month)
    income = sum(
        (t.amount for t in monthly if t.transaction_type == TransactionType.INCOME.value),
        Decimal("0"),
    )
    expense = sum(
        (t.amount for t in monthly if t.transaction_type == TransactionType.EXPENSE.value),
        Decimal("0"),
    )
    return MonthlySummary(
        year=year,
        month=month,
        income=income,
        expense=expense,
        balance=income - expense,
        transaction_count=len(monthly),
    )


def search_clients(clients: Iterable[ClientRow], term: str) -> List[ClientRow]:
    """Case-insensitive match of ``term`` against client name and email."""

    needle = term.strip().lower()
    if not needle:
        return list(clients)
    return [client for client in clients if needle in client.name.lower() or needle in client.email.lower()]


def client_label(client: Optional[ClientRow]) -> str:
    """Client name, or the removed-client placeholder for dangling references."""

    return client.name if client is not None else REMOVED_CLIENT_LABEL
