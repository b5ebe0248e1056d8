"""Enumerations shared across the AutoPrime shop modules.

Centralises domain constants so that the storage layer, the cascade layer,
the derived-state engine, and the presentation front-ends rely on a single
source of truth. Enum values match the identifiers persisted by the browser
build of the shop application, so data exported from it loads unchanged.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating data files.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_INTERVAL_MONTHS = 6
DEFAULT_WARNING_WINDOW_DAYS = 30
TOP_SERVICES_LIMIT = 5
DEFAULT_VIEW = "dashboard"

STORAGE_PREFIX = "autoprime_"

ODOMETER_SOURCE_REGISTRATION = "Cadastro"
ODOMETER_SOURCE_CORRECTION = "Ajuste de cadastro"
REMOVED_CLIENT_LABEL = "Cliente removido"
REMOVED_VEHICLE_LABEL = "Veículo removido"


class TransactionType(str, Enum):
    """Direction of a ledger entry."""

    INCOME = "RECEITA"
    EXPENSE = "DESPESA"


class TransactionCategory(str, Enum):
    """Fixed set of ledger categories."""

    SERVICE_ORDER = "OS"
    INVENTORY = "ESTOQUE"
    RENT = "ALUGUEL"
    BILLS = "CONTAS"
    PAYROLL = "PESSOAL"
    OTHER = "OUTROS"


class OrderStatus(str, Enum):
    """Service order lifecycle states. Orders are created completed."""

    OPEN = "ABERTA"
    COMPLETED = "CONCLUIDA"
    CANCELLED = "CANCELADA"


class AuditAction(str, Enum):
    """Kinds of mutation recorded in the audit log."""

    CREATE = "CRIACAO"
    EDIT = "EDICAO"
    DELETE = "EXCLUSAO"
    CONFIG = "CONFIG"


class AuditEntity(str, Enum):
    """Entity kinds referenced by audit log entries."""

    CLIENT = "CLIENTE"
    VEHICLE = "VEICULO"
    INVENTORY = "ESTOQUE"
    SERVICE_ORDER = "OS"
    RULE = "REGRA"
    FINANCIAL = "FINANCEIRO"


class AlertType(str, Enum):
    STOCK = "ESTOQUE"
    MAINTENANCE = "MANUTENCAO"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class StorageKey(str, Enum):
    """Keys under which each collection is serialized in the backing store."""

    CLIENTS = "clients"
    VEHICLES = "vehicles"
    PARTS = "inventory"
    SERVICE_ORDERS = "serviceOrders"
    MAINTENANCE_RULES = "maintenanceRules"
    TRANSACTIONS = "transactions"
    AUDIT_LOG = "logs"
    CURRENT_VIEW = "currentView"

    @property
    def storage_name(self) -> str:
        """Return the fully prefixed key used in the key-value store."""

        return f"{STORAGE_PREFIX}{self.value}"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_INTERVAL_MONTHS",
    "DEFAULT_WARNING_WINDOW_DAYS",
    "TOP_SERVICES_LIMIT",
    "DEFAULT_VIEW",
    "STORAGE_PREFIX",
    "ODOMETER_SOURCE_REGISTRATION",
    "ODOMETER_SOURCE_CORRECTION",
    "REMOVED_CLIENT_LABEL",
    "REMOVED_VEHICLE_LABEL",
    "TransactionType",
    "TransactionCategory",
    "OrderStatus",
    "AuditAction",
    "AuditEntity",
    "AlertType",
    "AlertSeverity",
    "StorageKey",
]
