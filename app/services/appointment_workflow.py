"""
Appointment lifecycle workflow.

Validates edits to an existing appointment, derives the combined start instant
and the service totals, checks the groomer's slot and sends a single update to
the appointment store. Completing an appointment records one inventory usage
event per consumed item, concurrently.

Public operations never raise WorkflowError: they return a WorkflowResult
holding exactly one Notification for the caller to display.
"""
import asyncio
import datetime
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from pydantic import ValidationError as SchemaError

from app.errors import (
    AuthenticationError,
    RemoteFailure,
    SchedulingConflictError,
    UsageRecordingError,
    ValidationError,
    WorkflowError,
)
from app.schemas import (
    AppointmentStatus,
    CompleteAppointmentRequest,
    EditAppointmentRequest,
    ServiceReference,
)
from app.services.api_client import GroomingApiClient
from app.services.totals import compute_totals
from app.utils.scheduling import (
    combine_date_time,
    find_conflicts,
    format_instant,
    parse_instant,
    split_instant,
)

logger = logging.getLogger(__name__)

INVALID_DATE_MESSAGE = "Invalid appointment date or time"


@dataclass
class Notification:
    title: str
    description: str
    variant: str = "default"


@dataclass
class WorkflowResult:
    ok: bool
    notification: Notification
    data: Any = None
    error: Optional[WorkflowError] = None

    @classmethod
    def success(cls, description, data=None):
        return cls(True, Notification("Success", description), data=data)

    @classmethod
    def failure(cls, error, fallback):
        description = error.message
        if isinstance(error, AuthenticationError) or (
            isinstance(error, RemoteFailure) and error.message == error.default_message
        ):
            description = fallback
        return cls(
            False,
            Notification(error.title, description, variant="destructive"),
            error=error,
        )


@dataclass
class WorkflowContext:
    """
    Everything the workflow needs from its surroundings: the API client, the
    acting user, the business timezone and reference data loaded on demand.
    """

    api: GroomingApiClient
    current_user: str
    timezone: str = "UTC"
    services: Optional[List[ServiceReference]] = None
    groomers: Optional[List[dict]] = None

    async def get_services(self):
        if self.services is None:
            payload = await self.api.list_services()
            try:
                self.services = [ServiceReference.model_validate(s) for s in payload]
            except SchemaError as e:
                raise RemoteFailure(f"Invalid service data from server: {e}") from e
        return self.services

    async def get_groomers(self):
        if self.groomers is None:
            self.groomers = await self.api.list_groomers()
        return self.groomers


@dataclass
class AppointmentUpdate:
    appointment_id: Any
    start: datetime.datetime
    payload: dict = field(default_factory=dict)


def _schema_error_message(error):
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else first.get("msg")


def parse_edit_request(data):
    """Schema-validate an edit request; raises ValidationError."""
    if isinstance(data, EditAppointmentRequest):
        request = data
    else:
        try:
            request = EditAppointmentRequest.model_validate(data)
        except SchemaError as e:
            raise ValidationError(_schema_error_message(e)) from e
    return request


def edit_form_defaults(appointment, tz="UTC"):
    """Decompose a stored appointment into the edit form's fields."""
    appointment_date, appointment_time = split_instant(
        parse_instant(appointment["date"]), tz
    )
    return {
        "appointmentId": appointment["id"],
        "status": appointment["status"],
        "notes": appointment.get("notes") or "",
        "appointmentDate": appointment_date,
        "appointmentTime": appointment_time,
        "services": list(appointment.get("services") or []),
        "groomerId": appointment.get("groomer_id"),
    }


class AppointmentWorkflow:
    def __init__(self, context: WorkflowContext):
        self.context = context

    @property
    def api(self):
        return self.context.api

    def validate_edit(self, data):
        """
        Schema and date/time validation. Pure: never touches the network.
        Returns ``(request, start_instant)``.
        """
        request = parse_edit_request(data)

        try:
            start = combine_date_time(
                request.appointment_date, request.appointment_time, self.context.timezone
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(INVALID_DATE_MESSAGE, field="appointmentDate") from e

        return request, start

    async def prepare_edit(self, data):
        """Validated, fully derived update for the appointment store."""
        request, start = self.validate_edit(data)

        current = None
        if request.groomer_id is None or request.services is None:
            current = await self.api.get_appointment(request.appointment_id)

        service_ids = (
            request.services if request.services is not None else current.get("services") or []
        )
        groomer_id = (
            request.groomer_id if request.groomer_id is not None else current.get("groomer_id")
        )

        services = await self.context.get_services()
        total_duration, total_price = compute_totals(services, service_ids)

        if request.status != AppointmentStatus.CANCELLED and groomer_id is not None:
            await self.ensure_slot_available(
                start, groomer_id, total_duration, exclude_id=request.appointment_id
            )

        payload = {
            "status": request.status.value,
            "notes": request.notes or "",
            "appointmentDate": request.appointment_date,
            "appointmentTime": request.appointment_time,
            "date": format_instant(start),
            "groomerId": groomer_id,
            "services": list(service_ids),
            "totalDuration": total_duration,
            "totalPrice": float(total_price),
        }
        return AppointmentUpdate(request.appointment_id, start, payload)

    async def check_time_slot(self, start, groomer_id, duration, exclude_id=None):
        """
        Appointments of ``groomer_id`` overlapping ``[start, start + duration)``.
        An empty list means the slot is free.
        """
        end = start + datetime.timedelta(minutes=duration or 0)
        booked = await self.api.list_appointments(
            groomer_id=groomer_id,
            start=format_instant(start),
            end=format_instant(end),
        )
        return find_conflicts(start, duration, booked or [], exclude_id=exclude_id)

    async def is_time_slot_available(self, start, groomer_id, duration, exclude_id=None):
        return not await self.check_time_slot(start, groomer_id, duration, exclude_id)

    async def ensure_slot_available(self, start, groomer_id, duration, exclude_id=None):
        conflicts = await self.check_time_slot(start, groomer_id, duration, exclude_id)
        if conflicts:
            logger.info(
                "Slot %s (+%s min) for groomer %s conflicts with %s",
                format_instant(start),
                duration,
                groomer_id,
                [c.get("id") for c in conflicts],
            )
            raise SchedulingConflictError(conflicts=conflicts)

    async def edit_appointment(self, data):
        """
        Validate and apply an edit; issues exactly one update call on success.
        """
        try:
            update = await self.prepare_edit(data)
            try:
                saved = await self.api.update_appointment(
                    update.appointment_id, update.payload
                )
            except RemoteFailure as e:
                if e.status_code == 409:
                    raise SchedulingConflictError(
                        conflicts=(e.payload or {}).get("conflicts")
                    ) from e
                raise
        except WorkflowError as e:
            logger.info("Appointment edit rejected: %s", e.message)
            return WorkflowResult.failure(e, "Failed to update appointment")

        logger.info(
            "Appointment %s updated (status=%s)",
            update.appointment_id,
            update.payload["status"],
        )
        return WorkflowResult.success("Appointment updated successfully", data=saved)

    async def default_consumables(self, service_id):
        """Consumable quantities configured on a service, keyed by item id."""
        for service in await self.context.get_services():
            if str(service.id) == str(service_id):
                return {c.item_id: c.quantity_used for c in service.consumables}
        return {}

    def usage_payloads(self, request):
        used_by = request.used_by or self.context.current_user
        return [
            {
                "item_id": item_id,
                "quantity_used": quantity,
                "service_id": request.service_id,
                "appointment_id": request.appointment_id,
                "used_by": used_by,
                "notes": f"Used in appointment {request.appointment_id}",
            }
            for item_id, quantity in request.consumables.items()
            if quantity > 0
        ]

    async def record_consumables(self, request):
        """
        Send every usage line concurrently and wait for all of them.

        Raises UsageRecordingError if any line failed; lines that succeeded
        stay recorded in the ledger.
        """
        payloads = self.usage_payloads(request)
        results = await asyncio.gather(
            *(self.api.record_usage(payload) for payload in payloads),
            return_exceptions=True,
        )

        recorded, failures = [], []
        for payload, result in zip(payloads, results):
            if isinstance(result, Exception):
                if not isinstance(result, WorkflowError):
                    logger.error(
                        "Unexpected error recording usage of item %s",
                        payload["item_id"],
                        exc_info=result,
                    )
                failures.append((payload, result))
            elif isinstance(result, BaseException):
                # Cancellation and interpreter exits propagate
                raise result
            else:
                recorded.append(result)

        if failures:
            logger.error(
                "Appointment %s: %d of %d usage records failed; %d already recorded",
                request.appointment_id,
                len(failures),
                len(payloads),
                len(recorded),
            )
            raise UsageRecordingError(failures, recorded)
        return recorded

    async def complete_appointment(self, data, on_complete=None):
        """
        Record inventory usage for a finished appointment, then call
        ``on_complete`` (sync or async) if every record succeeded.
        """
        try:
            if isinstance(data, CompleteAppointmentRequest):
                request = data
            else:
                try:
                    request = CompleteAppointmentRequest.model_validate(data)
                except SchemaError as e:
                    raise ValidationError(_schema_error_message(e)) from e

            recorded = await self.record_consumables(request)
        except WorkflowError as e:
            return WorkflowResult.failure(e, "Failed to record inventory usage")

        if on_complete is not None:
            outcome = on_complete()
            if inspect.isawaitable(outcome):
                await outcome

        logger.info(
            "Appointment %s completed with %d usage record(s)",
            request.appointment_id,
            len(recorded),
        )
        return WorkflowResult.success(
            "Appointment completed and inventory updated", data=recorded
        )
