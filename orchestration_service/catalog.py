"""
Operation catalog and typed handler registry.

Every operation id the planner may emit maps to exactly one handler. The
executor looks handlers up here once; an id that is not registered is
rejected uniformly by the executor instead of falling through a switch.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from .logging_setup import logger


class OperationKind(str, Enum):
    """Upstream method classes.

    EXPORT and SERVICE are side-effect free and cacheable; IMPORT and
    OPERATION mutate and invalidate the cache for their resource family.
    SERVICE and OPERATION are the compatibility aliases of EXPORT and IMPORT.
    """
    EXPORT = "export"
    SERVICE = "service"
    IMPORT = "import"
    OPERATION = "operation"

    @property
    def is_mutation(self) -> bool:
        return self in (OperationKind.IMPORT, OperationKind.OPERATION)


@dataclass(frozen=True)
class OperationDefinition:
    operation_id: str
    kind: OperationKind
    controller: str
    method: str
    family: str
    description: str = ""
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()
    requires_confirmation: bool = False
    default_filter: Optional[str] = None
    cache_ttl: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "kind": self.kind.value,
            "family": self.family,
            "description": self.description,
            "required": list(self.required),
            "optional": list(self.optional),
            "requires_confirmation": self.requires_confirmation,
        }


# ============================================================================
# FILTERS
# ============================================================================

class FilterBuilder:
    """Builds DevExpress criteria strings understood by the export endpoints.

    Dates are written as ``#!YYYY-MM-DD!#``; clauses are joined with AND.
    """

    def __init__(self):
        self._filters: List[str] = []

    @staticmethod
    def _format(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, date):
            return f"#!{value.isoformat()[:10]}!#"
        if isinstance(value, str):
            return "'" + value.replace("'", "''") + "'"
        return str(value)

    def equals(self, field_name: str, value: Any) -> "FilterBuilder":
        self._filters.append(f"[{field_name}] == {self._format(value)}")
        return self

    def greater_or_equal(self, field_name: str, value: Any) -> "FilterBuilder":
        self._filters.append(f"[{field_name}] >= {self._format(value)}")
        return self

    def less_or_equal(self, field_name: str, value: Any) -> "FilterBuilder":
        self._filters.append(f"[{field_name}] <= {self._format(value)}")
        return self

    def date_from(self, field_name: str, iso_day: str) -> "FilterBuilder":
        return self.greater_or_equal(field_name, date.fromisoformat(iso_day[:10]))

    def date_to(self, field_name: str, iso_day: str) -> "FilterBuilder":
        return self.less_or_equal(field_name, date.fromisoformat(iso_day[:10]))

    def in_(self, field_name: str, values: Iterable[Any]) -> "FilterBuilder":
        formatted = ", ".join(self._format(v) for v in values)
        self._filters.append(f"[{field_name}] IN ({formatted})")
        return self

    def raw(self, criteria: str) -> "FilterBuilder":
        if criteria:
            self._filters.append(criteria)
        return self

    def build(self) -> Optional[str]:
        if not self._filters:
            return None
        return " AND ".join(self._filters)


def build_export_filter(definition: OperationDefinition, params: Dict[str, Any]) -> Optional[str]:
    """Turn the planner's convenience parameters into one criteria string."""
    fb = FilterBuilder()
    if definition.default_filter:
        fb.raw(definition.default_filter)
    explicit = params.get("filter")
    if isinstance(explicit, str) and explicit.strip():
        fb.raw(explicit.strip())
    if params.get("dateFrom"):
        fb.date_from(params.get("dateField", "DocumentDate"), str(params["dateFrom"]))
    if params.get("dateTo"):
        fb.date_to(params.get("dateField", "DocumentDate"), str(params["dateTo"]))
    if params.get("customerId"):
        fb.equals("CustomerId", str(params["customerId"]))
    if params.get("status"):
        fb.equals("Status", str(params["status"]))
    if params.get("itemCodes"):
        fb.in_("ItemCode", list(params["itemCodes"]))
    return fb.build()


_CAMEL_RE = re.compile(r"^[a-z]")


def to_pascal_keys(params: Dict[str, Any]) -> Dict[str, Any]:
    """itemCode -> ItemCode, the casing the WebAPI bodies use."""
    return {_CAMEL_RE.sub(lambda m: m.group(0).upper(), k): v for k, v in params.items()}


# ============================================================================
# HANDLERS
# ============================================================================

class OperationHandler(ABC):
    """A capability the executor can invoke by operation id."""

    definition: OperationDefinition

    @property
    def operation_id(self) -> str:
        return self.definition.operation_id

    @abstractmethod
    async def invoke(self, parameters: Dict[str, Any]) -> Any:
        raise NotImplementedError


_CONTEXT_KEYS = ("companyCode", "departmentCode")
_EXPORT_KEYS = ("filter", "skip", "take", "sortField", "sortOrder", "dateFrom", "dateTo", "dateField",
                "customerId", "status", "itemCodes")
_IMPORT_FLAGS = ("validateOnly", "updateExisting", "ignoreWarnings")


class UpstreamOperationHandler(OperationHandler):
    """Maps a catalog definition onto the matching UpstreamClient method."""

    def __init__(self, definition: OperationDefinition, client: Any):
        self.definition = definition
        self.client = client

    async def invoke(self, parameters: Dict[str, Any]) -> Any:
        d = self.definition
        params = dict(parameters or {})
        context = {
            "company_code": params.pop("companyCode", None),
            "department_code": params.pop("departmentCode", None),
        }
        if d.kind == OperationKind.EXPORT:
            return await self.client.export(
                d.controller,
                d.method,
                family=d.family,
                export_filter=build_export_filter(d, params),
                skip=params.get("skip"),
                take=params.get("take"),
                sort_field=params.get("sortField"),
                sort_order=params.get("sortOrder"),
                cache_ttl=d.cache_ttl,
                **context,
            )
        if d.kind == OperationKind.SERVICE:
            body = {k: v for k, v in params.items() if k not in _EXPORT_KEYS}
            return await self.client.service(
                d.controller, d.method, to_pascal_keys(body), family=d.family, cache_ttl=d.cache_ttl, **context
            )
        if d.kind == OperationKind.IMPORT:
            flags = {k: bool(params.get(k, False)) for k in _IMPORT_FLAGS}
            return await self.client.import_data(
                d.controller,
                d.method,
                params.get("data"),
                family=d.family,
                validate_only=flags["validateOnly"],
                update_existing=flags["updateExisting"],
                ignore_warnings=flags["ignoreWarnings"],
                **context,
            )
        return await self.client.operation(d.controller, d.method, to_pascal_keys(params), family=d.family, **context)


class FunctionHandler(OperationHandler):
    """Wraps a local coroutine function as an operation (tools, fakes)."""

    def __init__(self, operation_id: str, fn: Callable[[Dict[str, Any]], Awaitable[Any]],
                 kind: OperationKind = OperationKind.SERVICE, required: Tuple[str, ...] = (),
                 family: Optional[str] = None, requires_confirmation: bool = False):
        self.definition = OperationDefinition(
            operation_id=operation_id,
            kind=kind,
            controller="local",
            method=operation_id,
            family=family or operation_id,
            required=tuple(required),
            requires_confirmation=requires_confirmation,
        )
        self._fn = fn

    async def invoke(self, parameters: Dict[str, Any]) -> Any:
        return await self._fn(dict(parameters or {}))


class OperationRegistry:
    def __init__(self, handlers: Optional[Iterable[OperationHandler]] = None):
        self._handlers: Dict[str, OperationHandler] = {}
        for h in handlers or ():
            self.register(h)

    def register(self, handler: OperationHandler) -> None:
        op_id = handler.operation_id
        if op_id in self._handlers:
            logger.warning("operation '%s' registered twice; replacing previous handler", op_id)
        self._handlers[op_id] = handler

    def get(self, operation_id: str) -> Optional[OperationHandler]:
        return self._handlers.get(operation_id)

    def __contains__(self, operation_id: object) -> bool:
        return operation_id in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def ids(self) -> List[str]:
        return sorted(self._handlers)

    def definitions(self) -> List[OperationDefinition]:
        return [self._handlers[k].definition for k in self.ids()]

    async def invoke(self, operation_id: str, parameters: Dict[str, Any]) -> Any:
        handler = self.get(operation_id)
        if handler is None:
            raise KeyError(operation_id)
        return await handler.invoke(parameters)

    @classmethod
    def from_catalog(cls, client: Any, catalog: Optional[Iterable[OperationDefinition]] = None) -> "OperationRegistry":
        return cls(UpstreamOperationHandler(d, client) for d in (catalog if catalog is not None else DEFAULT_CATALOG))


# ============================================================================
# DEFAULT CATALOG
# ============================================================================

_EXPORT_OPTIONAL = ("filter", "skip", "take", "sortField", "sortOrder")


def _export(op_id: str, controller: str, method: str, family: str, description: str,
            optional: Tuple[str, ...] = (), **kw) -> OperationDefinition:
    return OperationDefinition(op_id, OperationKind.EXPORT, controller, method, family, description,
                               optional=_EXPORT_OPTIONAL + optional, **kw)


def _import(op_id: str, controller: str, family: str, description: str) -> OperationDefinition:
    return OperationDefinition(op_id, OperationKind.IMPORT, controller, "Import", family, description,
                               required=("data",), optional=_IMPORT_FLAGS, requires_confirmation=True)


DEFAULT_CATALOG: List[OperationDefinition] = [
    # SH: shared
    _export("export_contacts", "SH/Contact", "ExportContacts", "contacts", "Export contacts (customers, suppliers)"),
    _export("export_customers", "SH/Contact", "ExportContacts", "contacts", "Export the customer list",
            default_filter="[ContactType] == 'Customer'"),
    _import("import_contacts", "SH/Contacts", "contacts", "Create or update contacts"),
    # FI: finance
    _export("export_postings", "FI/Posting", "ExportPostings", "postings", "Export general ledger postings",
            optional=("dateFrom", "dateTo", "dateField")),
    _export("export_maturities", "FI/Maturity", "ExportMaturities", "maturities", "Export payable/receivable maturities",
            optional=("dateFrom", "dateTo", "dateField", "status")),
    # SD: sales
    _export("export_sales_orders", "SD/SalesOrder", "ExportSalesOrders", "sales_orders", "Export sales orders",
            optional=("dateFrom", "dateTo", "dateField", "customerId", "status")),
    _export("export_sales_invoices", "SD/SalesInvoice", "ExportSalesInvoices", "sales_invoices", "Export sales invoices",
            optional=("dateFrom", "dateTo", "dateField", "customerId")),
    _export("export_sales_delivery_notes", "SD/SalesDeliveryNote", "ExportSalesDeliveryNotes", "sales_delivery_notes",
            "Export sales delivery notes", optional=("dateFrom", "dateTo", "dateField", "customerId")),
    _import("import_sales_orders", "SD/SalesOrders", "sales_orders", "Create sales orders"),
    # WM: warehouse
    _export("export_items", "WM/Common", "ExportItems", "items", "Export the item catalog", optional=("itemCodes",)),
    _export("export_warehouse_postings", "WM/WarehousePosting", "ExportWarehousePostings", "items",
            "Export warehouse movements", optional=("dateFrom", "dateTo", "dateField", "itemCodes")),
    OperationDefinition("get_items_stock", OperationKind.SERVICE, "WM/Common", "GetItemsStock", "items",
                        "Current stock levels", optional=("itemCodes", "warehouseCodes"), cache_ttl=120),
    OperationDefinition("get_items_availability", OperationKind.SERVICE, "WM/Common", "GetItemsAvailability", "items",
                        "Available-to-promise check for an item", required=("itemCode", "requestedQuantity"),
                        optional=("warehouseCode",), cache_ttl=120),
    _import("import_items", "WM/Items", "items", "Create or update items"),
    _import("import_warehouse_postings", "WM/WarehousePostings", "items", "Register warehouse movements"),
    # Scm: supply chain
    _export("export_purchase_orders", "Scm/PurchaseOrder", "ExportPurchaseOrders", "purchase_orders",
            "Export purchase orders", optional=("dateFrom", "dateTo", "dateField", "status")),
    _import("import_purchase_orders", "Scm/PurchaseOrders", "purchase_orders", "Create purchase orders"),
    # PM: projects
    _export("export_projects", "PM/Project", "ExportProjects", "projects", "Export projects", optional=("status",)),
]


def describe_catalog(definitions: Optional[Iterable[OperationDefinition]] = None) -> str:
    """Planner-readable listing of the available operations, grouped by family."""
    by_family: Dict[str, List[OperationDefinition]] = {}
    for d in definitions if definitions is not None else DEFAULT_CATALOG:
        by_family.setdefault(d.family, []).append(d)
    lines: List[str] = []
    for family in sorted(by_family):
        lines.append(f"## {family}")
        for d in by_family[family]:
            line = f"- {d.operation_id} ({d.kind.value}): {d.description}"
            if d.required:
                line += f" | required: {', '.join(d.required)}"
            if d.optional:
                line += f" | optional: {', '.join(d.optional)}"
            if d.requires_confirmation:
                line += " | requires user confirmation"
            lines.append(line)
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"
