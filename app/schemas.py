from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Identifier = Union[int, str]


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ServiceCategory(str, Enum):
    SERVICE = "Service"
    ADDON = "Addon"
    PACKAGE = "Package"


class WorkflowModel(BaseModel):
    # Accept both camelCase (web form payloads) and snake_case field names
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class EditAppointmentRequest(WorkflowModel):
    appointment_id: Identifier
    status: AppointmentStatus
    notes: Optional[str] = None
    appointment_date: str
    appointment_time: str
    groomer_id: Optional[Identifier] = None
    services: Optional[List[Identifier]] = None


class CompleteAppointmentRequest(WorkflowModel):
    appointment_id: Identifier
    service_id: Identifier
    used_by: Optional[str] = None
    # inventory item id -> quantity used; non-positive quantities are skipped
    consumables: Dict[Identifier, float] = Field(default_factory=dict)


class ServiceConsumable(BaseModel):
    item_id: Identifier
    item_name: str
    quantity_used: float = Field(gt=0)


class ServiceReference(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Identifier
    name: str
    duration: Optional[int] = Field(default=None, ge=15)
    price: Optional[float] = Field(default=None, ge=0)
    category: ServiceCategory = ServiceCategory.SERVICE
    consumables: List[ServiceConsumable] = Field(default_factory=list)
