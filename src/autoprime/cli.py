"""Command-line entry points for the AutoPrime toolkit.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into calls on the business layer. Pre-checks that the
cascade layer deliberately leaves to its callers (the owning client exists,
enough stock is on hand) are applied here before a mutation is attempted.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import analytics, core_logic, documents, log
from .constants import TransactionCategory, TransactionType
from .records import ServiceItem, UsedPart


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="autoprime-cli",
        description="Command-line tools for the AutoPrime shop data file.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as service orders and deletions."""
    specs = {
        "add-client": register_add_client_command(subparsers),
        "delete-client": register_delete_command(
            "delete-client", "Delete a client with its vehicles and their orders.", run_delete_client),
        "add-vehicle": register_add_vehicle_command(subparsers),
        "delete-vehicle": register_delete_command(
            "delete-vehicle", "Delete a vehicle and its service orders.", run_delete_vehicle),
        "add-part": register_add_part_command(subparsers),
        "restock": register_restock_command(subparsers),
        "delete-part": register_delete_command(
            "delete-part", "Remove a part from the inventory.", run_delete_part),
        "add-order": register_add_order_command(subparsers),
        "delete-order": register_delete_command(
            "delete-order", "Delete a service order and its ledger entry.", run_delete_order),
        "add-rule": register_add_rule_command(subparsers),
        "delete-rule": register_delete_command(
            "delete-rule", "Delete a maintenance rule.", run_delete_rule),
        "add-transaction": register_add_transaction_command(subparsers),
        "delete-transaction": register_delete_command(
            "delete-transaction", "Delete a ledger entry.", run_delete_transaction),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as alerts and reports."""
    specs = {
        "alerts": register_simple_command("alerts", "Display stock and maintenance alerts.", run_alerts_report),
        "metrics": register_simple_command("metrics", "Display dashboard metrics.", run_metrics_report),
        "finance": register_finance_command(subparsers),
        "log": register_simple_command("log", "Display the audit log, newest first.", run_log_report),
        "clients": register_clients_command(subparsers),
        "export-order": register_export_order_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_client_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-client``."""
    name = "add-client"
    help_text = "Register a new client."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default="")
        parser.add_argument("--email", default="")
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_client)


def register_add_vehicle_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-vehicle``."""
    name = "add-vehicle"
    help_text = "Register a vehicle for an existing client."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--client-id", required=True)
        parser.add_argument("--plate", required=True)
        parser.add_argument("--model", required=True)
        parser.add_argument("--odometer", required=True, type=int)
        parser.add_argument(
            "--last-maintenance",
            default=None,
            help="Date of the last maintenance (YYYY-MM-DD); defaults to today.",
        )
        parser.add_argument("--year", default=None)
        parser.add_argument("--make", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_vehicle)


def register_add_part_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-part``."""
    name = "add-part"
    help_text = "Register an inventory item and book its purchase."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--quantity", required=True, type=int)
        parser.add_argument("--minimum", required=True, type=int)
        parser.add_argument("--unit-price", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_part)


def register_restock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restock``."""
    name = "restock"
    help_text = "Add units to an existing inventory item."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--part-id", required=True)
        parser.add_argument("--quantity", required=True, type=int)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restock)


def register_add_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-order``."""
    name = "add-order"
    help_text = "Register a completed service order."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vehicle-id", required=True)
        parser.add_argument("--odometer", required=True, type=int)
        parser.add_argument(
            "--part",
            dest="parts",
            action="append",
            default=[],
            metavar="PART_ID:QTY",
            help="Consumed part; repeat for several parts.",
        )
        parser.add_argument(
            "--service",
            dest="services",
            action="append",
            default=[],
            metavar="NAME=PRICE",
            help="Service line; repeat for several services.",
        )
        parser.add_argument("--mechanic", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_order)


def register_add_rule_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-rule``."""
    name = "add-rule"
    help_text = "Create a recurring maintenance rule."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--service", required=True)
        parser.add_argument("--months", required=True, type=int)
        parser.add_argument("--vehicle-id", default=None, help="Restrict the rule to one vehicle.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_rule)


def register_add_transaction_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-transaction``."""
    name = "add-transaction"
    help_text = "Record a manual income or expense."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--description", required=True)
        parser.add_argument(
            "--type",
            dest="transaction_type",
            choices=[member.value for member in TransactionType],
            required=True,
        )
        parser.add_argument("--amount", required=True)
        parser.add_argument(
            "--category",
            choices=[member.value for member in TransactionCategory],
            default=TransactionCategory.OTHER.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_transaction)


def register_delete_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Build a spec for a ``delete-*`` command taking a single ``--id``."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--id", dest="entity_id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_simple_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Build a spec for a report that takes no arguments."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_finance_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``finance``."""
    name = "finance"
    help_text = "Display the ledger and balance for one month."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--year", type=int, default=None)
        parser.add_argument("--month", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_finance_report)


def register_clients_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``clients``."""
    name = "clients"
    help_text = "List clients, optionally filtered by name or email."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_clients_report)


def register_export_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export-order``."""
    name = "export-order"
    help_text = "Write a printable workbook for a service order."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--id", dest="entity_id", required=True)
        parser.add_argument("--output", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export_order)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_money(raw: str) -> Decimal:
    """Parse a decimal amount, accepting a comma as the decimal separator."""
    try:
        return Decimal(raw.strip().replace(",", "."))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {raw!r}") from exc


def parse_date(raw: Optional[str]) -> Optional[datetime]:
    """Parse ``YYYY-MM-DD`` as midnight UTC."""
    if raw is None:
        return None
    return datetime.strptime(raw, "%Y-%m-%d").replace(tzinfo=UTC)


def parse_service_line(raw: str) -> ServiceItem:
    """Translate ``NAME=PRICE`` into a service line."""
    name, separator, price = raw.rpartition("=")
    if not separator or not name.strip():
        raise ValueError(f"Service must be given as NAME=PRICE: {raw!r}")
    return ServiceItem(name=name.strip(), price=parse_money(price))


def parse_part_line(raw: str) -> tuple[str, int]:
    """Translate ``PART_ID:QTY`` into its id and quantity."""
    part_id, separator, quantity = raw.rpartition(":")
    if not separator or not part_id.strip():
        raise ValueError(f"Part must be given as PART_ID:QTY: {raw!r}")
    return part_id.strip(), int(quantity)


def translate_add_client(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-client request."""
    return {
        "name": args.name,
        "phone": args.phone,
        "email": args.email,
        "notes": args.notes,
    }


def translate_add_vehicle(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-vehicle request."""
    return {
        "client_id": args.client_id,
        "plate": args.plate,
        "model": args.model,
        "entry_odometer": args.odometer,
        "last_maintenance_date": parse_date(args.last_maintenance),
        "year": args.year,
        "make": args.make,
        "notes": args.notes,
    }


def translate_add_part(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-part request."""
    return {
        "name": args.name,
        "quantity": args.quantity,
        "minimum_quantity": args.minimum,
        "unit_price": parse_money(args.unit_price),
    }


def translate_add_order(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
) -> core_logic.ServiceOrderCommand:
    """Translate CLI args into a service-order command object.

    Each part line is checked against the stock on hand, counting earlier
    lines for the same part.
    """
    vehicle = core_logic.get_vehicle(context, args.vehicle_id)
    client = core_logic.require_client(context, vehicle.client_id)

    requested: Dict[str, int] = {}
    used_parts: List[UsedPart] = []
    for raw in args.parts:
        part_id, quantity = parse_part_line(raw)
        requested[part_id] = requested.get(part_id, 0) + quantity
        core_logic.check_part_availability(context, part_id, requested[part_id])
        used_parts.append(core_logic.build_used_part(context, part_id, quantity))

    return core_logic.ServiceOrderCommand(
        client_id=client.client_id,
        vehicle_id=vehicle.vehicle_id,
        odometer=args.odometer,
        used_parts=tuple(used_parts),
        services=tuple(parse_service_line(raw) for raw in args.services),
        mechanic=args.mechanic,
        notes=args.notes,
    )


def translate_add_transaction(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-transaction request."""
    return {
        "description": args.description,
        "transaction_type": TransactionType(args.transaction_type),
        "amount": parse_money(args.amount),
        "category": TransactionCategory(args.category),
    }


def run_add_client(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-client workflow in the BLL."""
    client = core_logic.add_client(context, **translate_add_client(args))
    print(client.client_id)
    return 0


def run_add_vehicle(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-vehicle workflow in the BLL."""
    core_logic.require_client(context, args.client_id)
    vehicle = core_logic.add_vehicle(context, **translate_add_vehicle(args))
    print(vehicle.vehicle_id)
    return 0


def run_add_part(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-part workflow in the BLL."""
    part = core_logic.add_part(context, **translate_add_part(args))
    print(part.part_id)
    return 0


def run_restock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Raise a part's on-hand quantity via the BLL."""
    core_logic.require_positive_quantity(args.quantity)
    part = core_logic.get_part(context, args.part_id)
    updated = core_logic.update_part(context, part.part_id, {"quantity": part.quantity + args.quantity})
    print(f"{updated.name}: {updated.quantity}")
    return 0


def run_add_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the service-order workflow via the BLL."""
    command = translate_add_order(context, args)
    order = core_logic.add_service_order(context, command)
    print(f"{order.order_id} {documents.format_money(order.total)}")
    return 0


def run_add_rule(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-rule workflow in the BLL."""
    if args.vehicle_id:
        core_logic.get_vehicle(context, args.vehicle_id)
    rule = core_logic.add_maintenance_rule(
        context,
        service_name=args.service,
        interval_months=args.months,
        vehicle_id=args.vehicle_id,
    )
    print(rule.rule_id)
    return 0


def run_add_transaction(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the manual ledger workflow in the BLL."""
    entry = core_logic.add_transaction(context, **translate_add_transaction(args))
    print(entry.transaction_id)
    return 0


def _report_delete(deleted: bool, label: str, entity_id: str) -> int:
    if not deleted:
        raise core_logic.MissingReferenceError(f"Unknown {label} id: {entity_id}")
    print(f"Deleted {label} {entity_id}")
    return 0


def run_delete_client(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _report_delete(core_logic.delete_client(context, args.entity_id), "client", args.entity_id)


def run_delete_vehicle(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _report_delete(core_logic.delete_vehicle(context, args.entity_id), "vehicle", args.entity_id)


def run_delete_part(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _report_delete(core_logic.delete_part(context, args.entity_id), "part", args.entity_id)


def run_delete_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _report_delete(core_logic.delete_service_order(context, args.entity_id), "service order", args.entity_id)


def run_delete_rule(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _report_delete(core_logic.delete_maintenance_rule(context, args.entity_id), "rule", args.entity_id)


def run_delete_transaction(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _report_delete(core_logic.delete_transaction(context, args.entity_id), "transaction", args.entity_id)


def run_alerts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every current alert, one per line."""
    alerts = core_logic.current_alerts(context)
    if not alerts:
        print("No alerts.")
    for alert in alerts:
        suffix = f" | {alert.client_name} {alert.client_phone}".rstrip() if alert.client_name else ""
        print(f"[{alert.severity}] {alert.message}{suffix}")
    return 0


def run_metrics_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the dashboard metrics."""
    metrics = core_logic.current_metrics(context)
    print(f"Faturamento total: {documents.format_money(metrics.total_revenue)}")
    print(f"Faturamento do mês: {documents.format_money(metrics.month_revenue)}")
    print(f"OS abertas: {metrics.open_orders}")
    print(f"OS concluídas: {metrics.completed_orders}")
    print(f"Ticket médio: {documents.format_money(metrics.average_ticket)}")
    for frequency in metrics.top_services:
        print(f"  {frequency.name}: {frequency.count}")
    return 0


def run_finance_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one month of ledger entries followed by its balance."""
    today = datetime.now(UTC)
    year = args.year or today.year
    month = args.month or today.month
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month}")
    for entry in analytics.transactions_for_month(context.store.transactions, year, month):
        print(f"{entry.date_iso[:10]} {entry.transaction_type} {entry.category} "
              f"{documents.format_money(entry.amount)} {entry.description}")
    summary = core_logic.monthly_summary(context, year, month)
    print(f"Receitas: {documents.format_money(summary.income)}")
    print(f"Despesas: {documents.format_money(summary.expense)}")
    print(f"Saldo: {documents.format_money(summary.balance)}")
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the audit trail, newest first."""
    for entry in core_logic.list_audit_log(context):
        print(f"{entry.timestamp_iso} {entry.action} {entry.entity} {entry.details}")
    return 0


def run_clients_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print matching clients with their vehicle count."""
    for client in analytics.search_clients(core_logic.list_clients(context), args.search):
        vehicle_count = len(core_logic.vehicles_of_client(context, client.client_id))
        print(f"{client.client_id} {client.name} {client.phone} {client.email} ({vehicle_count} veículo(s))")
    return 0


def run_export_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Render a service order to a printable workbook."""
    document = documents.generate_service_order_document(context, args.entity_id)
    destination = args.output or Path.cwd() / f"OS_{core_logic.short_id(document.order_id)}.xlsx"
    print(documents.render_service_order_workbook(document, destination))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, (ValueError, KeyError)):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
