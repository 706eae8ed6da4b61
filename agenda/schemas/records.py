"""
Row and write schemas, one per table.

Rows leaving the data access layer are validated against these types so a
misspelled column or an out-of-range enum never reaches a store.
"""
import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, computed_field


Role = Literal["Admin", "Secretary", "Collaborator"]
Segment = Literal["HVAC-R", "Electrical"]
ServiceStatus = Literal["todo", "doing", "done", "green"]
Day = Literal["Segunda", "Terça", "Quarta", "Quinta", "Sexta", "Sábado"]


class ClientRow(BaseModel):
    id: uuid.UUID
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    segment: Optional[Segment] = None

    model_config = ConfigDict(from_attributes=True)


class ServiceOrderRow(BaseModel):
    id: uuid.UUID
    os_number: str
    client_id: uuid.UUID
    day: Day
    status: ServiceStatus
    type: Segment
    assignee: Optional[str] = None
    created_at: Optional[datetime] = None
    clients: Optional[ClientRow] = None

    model_config = ConfigDict(from_attributes=True)


class ChecklistItemRow(BaseModel):
    id: uuid.UUID
    os_id: uuid.UUID
    item: Optional[str] = None
    step: Optional[str] = None
    done: bool = False
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @computed_field  # type: ignore[misc]
    @property
    def label(self) -> str:
        return self.item or self.step or ""


class PhotoRow(BaseModel):
    id: uuid.UUID
    os_id: uuid.UUID
    storage_path: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReportRow(BaseModel):
    id: uuid.UUID
    os_id: uuid.UUID
    content: Optional[str] = None
    pdf_path: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ProfileRow(BaseModel):
    id: uuid.UUID
    google_email: Optional[str] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UserRoleRow(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    role: Role

    model_config = ConfigDict(from_attributes=True)


class AuditLogRow(BaseModel):
    id: uuid.UUID
    action: str
    actor: Optional[str] = None
    entity: str
    meta: Optional[dict] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Write payloads: partial, unknown columns rejected


class _Write(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ClientWrite(_Write):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    segment: Optional[Segment] = None


class ServiceOrderWrite(_Write):
    os_number: Optional[str] = None
    client_id: Optional[uuid.UUID] = None
    day: Optional[Day] = None
    status: Optional[ServiceStatus] = None
    type: Optional[Segment] = None
    assignee: Optional[str] = None


class MaterialWrite(_Write):
    os_id: Optional[uuid.UUID] = None
    item: Optional[str] = None
    done: Optional[bool] = None


class ProcessWrite(_Write):
    os_id: Optional[uuid.UUID] = None
    step: Optional[str] = None
    done: Optional[bool] = None


class PhotoWrite(_Write):
    os_id: Optional[uuid.UUID] = None
    storage_path: Optional[str] = None


class ReportWrite(_Write):
    os_id: Optional[uuid.UUID] = None
    content: Optional[str] = None
    pdf_path: Optional[str] = None


class ProfileWrite(_Write):
    id: Optional[uuid.UUID] = None
    google_email: Optional[str] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[uuid.UUID] = None


class UserRoleWrite(_Write):
    user_id: Optional[uuid.UUID] = None
    role: Optional[Role] = None
