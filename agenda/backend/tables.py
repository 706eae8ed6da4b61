"""
Table registry: every table the data access layer may touch, with its
model, row schema, write schema and declared joins.
"""
from dataclasses import dataclass, field
from typing import Dict, Type

from pydantic import BaseModel

from ..errors import UnknownTableError
from ..models.models import (
    AuditLog,
    Client,
    MaterialChecklistItem,
    Photo,
    ProcessChecklistItem,
    Profile,
    Report,
    ServiceOrder,
    UserRole,
)
from ..schemas.records import (
    AuditLogRow,
    ClientRow,
    ClientWrite,
    ChecklistItemRow,
    MaterialWrite,
    PhotoRow,
    PhotoWrite,
    ProcessWrite,
    ProfileRow,
    ProfileWrite,
    ReportRow,
    ReportWrite,
    ServiceOrderRow,
    ServiceOrderWrite,
    UserRoleRow,
    UserRoleWrite,
)


@dataclass(frozen=True)
class Join:
    # Relationship attribute on the model, and the key it is exposed under
    relationship: str
    schema: Type[BaseModel]


@dataclass(frozen=True)
class TableSpec:
    name: str
    model: type
    row: Type[BaseModel]
    write: Type[BaseModel]
    joins: Dict[str, Join] = field(default_factory=dict)


class _ReadOnly(BaseModel):
    model_config = {"extra": "forbid"}


TABLES: Dict[str, TableSpec] = {
    spec.name: spec
    for spec in (
        TableSpec("clients", Client, ClientRow, ClientWrite),
        TableSpec(
            "service_orders",
            ServiceOrder,
            ServiceOrderRow,
            ServiceOrderWrite,
            joins={"clients": Join("client", ClientRow)},
        ),
        TableSpec("materials_checklist", MaterialChecklistItem, ChecklistItemRow, MaterialWrite),
        TableSpec("processes_checklist", ProcessChecklistItem, ChecklistItemRow, ProcessWrite),
        TableSpec("photos", Photo, PhotoRow, PhotoWrite),
        TableSpec("reports", Report, ReportRow, ReportWrite),
        TableSpec("profiles", Profile, ProfileRow, ProfileWrite),
        TableSpec("user_roles", UserRole, UserRoleRow, UserRoleWrite),
        TableSpec("audit_log", AuditLog, AuditLogRow, _ReadOnly),
    )
}


def get_table(name: str) -> TableSpec:
    spec = TABLES.get(name)
    if spec is None:
        raise UnknownTableError(f"Unknown table: {name}", table=name)
    return spec
