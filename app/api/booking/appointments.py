# List, book and edit grooming appointments; groomer slot availability
import datetime
import logging

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import and_, select

from app.extensions import db
from ...models import (
    APPOINTMENT_STATUSES,
    Appointment,
    AppointmentService,
    Pet,
    Service,
    Staff,
)
from ...services.totals import compute_totals
from ...utils.auth_utils import token_required
from ...utils.scheduling import (
    combine_date_time,
    format_instant,
    parse_date,
    parse_instant,
    available_slots,
    split_instant,
    to_naive_utc,
    to_utc,
)

logger = logging.getLogger(__name__)

appointments_bp = Blueprint("appointments", __name__, url_prefix="/api/appointments")

# Statuses that occupy a groomer's time
BLOCKING_STATUSES = ("pending", "confirmed", "completed")


def _field(data, camel, snake):
    """Request bodies may use camelCase (web client) or snake_case keys."""
    if camel in data:
        return data[camel]
    return data.get(snake)


def _has_field(data, camel, snake):
    return camel in data or snake in data


def serialize_appointment(apt):
    tz = current_app.config.get("BUSINESS_TIMEZONE", "UTC")
    appointment_date, appointment_time = split_instant(apt.date, tz)
    return {
        "id": apt.id,
        "customer_id": apt.customer_id,
        "customer_name": (
            " ".join(filter(None, [apt.customer.first_name, apt.customer.last_name]))
            if apt.customer
            else None
        ),
        "pet_id": apt.pet_id,
        "pet_name": apt.pet.name if apt.pet else None,
        "pet_breed": apt.pet.breed if apt.pet else None,
        "groomer_id": apt.groomer_id,
        "groomer_name": apt.groomer.name if apt.groomer else None,
        "services": apt.service_ids,
        "date": format_instant(apt.date),
        "end_at": format_instant(apt.end_at),
        "appointment_date": appointment_date,
        "appointment_time": appointment_time,
        "status": apt.status,
        "notes": apt.notes,
        "total_duration": apt.total_duration,
        "total_price": float(apt.total_price) if apt.total_price is not None else 0.0,
        "created_at": apt.created_at.isoformat() if apt.created_at else None,
        "updated_at": apt.updated_at.isoformat() if apt.updated_at else None,
    }


def _error(message, status_code, **extra):
    body = {"status": "error", "message": message}
    body.update(extra)
    return jsonify(body), status_code


def _resolve_start(data):
    """
    Combined start instant from ``date`` or ``appointmentDate`` +
    ``appointmentTime``. Returns None when the body carries neither.
    Raises ValueError on malformed values.
    """
    if data.get("date"):
        return parse_instant(data["date"])

    date_str = _field(data, "appointmentDate", "appointment_date")
    time_str = _field(data, "appointmentTime", "appointment_time")
    if date_str is None and time_str is None:
        return None
    if not date_str or not time_str:
        raise ValueError("Both appointmentDate and appointmentTime are required")

    return combine_date_time(
        date_str, time_str, current_app.config.get("BUSINESS_TIMEZONE", "UTC")
    )


def _load_services(service_ids):
    """Return (services in requested order, missing ids)."""
    ids = []
    for raw in service_ids:
        try:
            ids.append(int(raw))
        except (TypeError, ValueError):
            return [], [raw]

    found = {
        s.id: s for s in db.session.scalars(select(Service).where(Service.id.in_(ids)))
    }
    missing = [i for i in ids if i not in found]
    # Duplicate selections count once
    ordered = list(dict.fromkeys(found[i] for i in ids if i in found))
    return ordered, missing


def _set_services(appointment, services):
    appointment.service_links = [
        AppointmentService(service=service, position=position)
        for position, service in enumerate(services)
    ]


def overlapping_appointments(groomer_id, start, end, exclude_id=None):
    """Blocking appointments for a groomer whose [date, end_at) meets [start, end)."""
    stmt = select(Appointment).where(
        and_(
            Appointment.groomer_id == groomer_id,
            Appointment.status.in_(BLOCKING_STATUSES),
            Appointment.date < to_naive_utc(end),
            Appointment.end_at > to_naive_utc(start),
        )
    )
    if exclude_id is not None:
        stmt = stmt.where(Appointment.id != exclude_id)
    return db.session.scalars(stmt).all()


@appointments_bp.route("", methods=["GET"])
@token_required()
def list_appointments():
    """
    List appointments
    ---
    tags:
      - Appointments
    parameters:
      - {in: query, name: groomer_id, type: integer, required: false}
      - {in: query, name: customer_id, type: integer, required: false}
      - {in: query, name: status, type: string, required: false}
      - in: query
        name: start
        type: string
        required: false
        description: ISO-8601 lower bound; appointments ending after it are kept
      - in: query
        name: end
        type: string
        required: false
        description: ISO-8601 upper bound; appointments starting before it are kept
    responses:
      200:
        description: Appointments ordered by start time
      400:
        description: Invalid filter
    """
    stmt = select(Appointment).order_by(Appointment.date)

    groomer_id = request.args.get("groomer_id", type=int)
    if groomer_id is not None:
        stmt = stmt.where(Appointment.groomer_id == groomer_id)

    customer_id = request.args.get("customer_id", type=int)
    if customer_id is not None:
        stmt = stmt.where(Appointment.customer_id == customer_id)

    status = request.args.get("status")
    if status:
        if status not in APPOINTMENT_STATUSES:
            return _error(f"Invalid status '{status}'", 400)
        stmt = stmt.where(Appointment.status == status)

    try:
        if request.args.get("start"):
            start = parse_instant(request.args["start"])
            stmt = stmt.where(Appointment.end_at > to_naive_utc(start))
        if request.args.get("end"):
            end = parse_instant(request.args["end"])
            stmt = stmt.where(Appointment.date < to_naive_utc(end))
    except ValueError:
        return _error("start and end must be ISO-8601 timestamps", 400)

    appointments = db.session.scalars(stmt).all()
    return jsonify([serialize_appointment(a) for a in appointments])


@appointments_bp.route("/<int:appointment_id>", methods=["GET"])
@token_required()
def get_appointment(appointment_id):
    appointment = db.session.get(Appointment, appointment_id)
    if not appointment:
        return _error("Appointment not found", 404)
    return jsonify(serialize_appointment(appointment))


@appointments_bp.route("/<int:appointment_id>", methods=["POST", "PUT"])
@token_required()
def update_appointment(appointment_id):
    """
    Apply an edit to an appointment
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          $ref: '#/definitions/AppointmentUpdate'
    responses:
      200:
        description: Updated appointment; totals recomputed from its services
      400:
        description: Invalid status, date/time or unknown service
      404:
        description: Appointment or groomer not found
      409:
        description: The groomer already has an appointment in that slot
    """
    appointment = db.session.get(Appointment, appointment_id)
    if not appointment:
        return _error("Appointment not found", 404)

    data = request.get_json(silent=True)
    if not data:
        return _error("Request body is required", 400)

    try:
        if "status" in data:
            if data["status"] not in APPOINTMENT_STATUSES:
                return _error(
                    f"status must be one of: {', '.join(APPOINTMENT_STATUSES)}", 400
                )
            appointment.status = data["status"]

        if "notes" in data:
            appointment.notes = data.get("notes") or ""

        if _has_field(data, "groomerId", "groomer_id"):
            groomer_id = _field(data, "groomerId", "groomer_id")
            try:
                groomer = db.session.get(Staff, int(groomer_id)) if groomer_id else None
            except (TypeError, ValueError):
                db.session.rollback()
                return _error("groomerId must be an integer", 400)
            if not groomer:
                db.session.rollback()
                return _error("Groomer not found", 404)
            if groomer.role != "groomer":
                db.session.rollback()
                return _error("Selected staff member is not a groomer", 400)
            appointment.groomer_id = groomer.id

        if "services" in data:
            service_ids = data.get("services") or []
            if not isinstance(service_ids, list):
                db.session.rollback()
                return _error("services must be a list of service ids", 400)
            services, missing = _load_services(service_ids)
            if missing:
                db.session.rollback()
                return _error(f"Unknown service ids: {missing}", 400)
            _set_services(appointment, services)
        else:
            services = appointment.services

        try:
            start = _resolve_start(data)
        except (ValueError, TypeError):
            db.session.rollback()
            return _error("Invalid appointment date or time", 400)
        if start is not None:
            appointment.date = to_naive_utc(start)

        total_duration, total_price = compute_totals(services, [s.id for s in services])
        client_duration = _field(data, "totalDuration", "total_duration")
        if client_duration is not None and client_duration != total_duration:
            logger.warning(
                "Appointment %s: client totalDuration %s differs from recomputed %s",
                appointment_id,
                client_duration,
                total_duration,
            )
        appointment.total_duration = total_duration
        appointment.total_price = total_price
        appointment.end_at = appointment.date + datetime.timedelta(minutes=total_duration)

        if appointment.status != "cancelled" and appointment.groomer_id is not None:
            with db.session.no_autoflush:
                clashes = overlapping_appointments(
                    appointment.groomer_id,
                    to_utc(appointment.date),
                    to_utc(appointment.end_at),
                    exclude_id=appointment.id,
                )
            if clashes:
                db.session.rollback()
                return _error(
                    "This time slot conflicts with another appointment",
                    409,
                    conflicts=[c.id for c in clashes],
                )

        db.session.commit()
        logger.info(
            "Appointment %s updated: status=%s date=%s duration=%s",
            appointment.id,
            appointment.status,
            appointment.date,
            appointment.total_duration,
        )
        return jsonify(serialize_appointment(appointment)), 200

    except Exception as e:
        db.session.rollback()
        logger.exception("Failed to update appointment %s", appointment_id)
        return _error("Database error", 500, details=str(e))


@appointments_bp.route("/add", methods=["POST"])
@token_required()
def add_appointment():
    """
    Book a new appointment
    ---
    tags:
      - Appointments
    description: Stores a booking for a pet with one or more services. Totals
        and the end time are derived from the selected services.
    responses:
      201:
        description: Appointment created
      400:
        description: Missing or invalid parameters
      404:
        description: Pet or groomer not found
      409:
        description: Slot conflicts with another appointment
    """
    data = request.get_json(silent=True)
    if not data:
        return _error("Request body is required", 400)

    pet_id = _field(data, "petId", "pet_id")
    service_ids = data.get("services") or []
    missing = [
        name
        for name, value in (("petId", pet_id), ("services", service_ids))
        if not value
    ]
    if missing:
        return _error(f'Missing required fields: {", ".join(missing)}', 400)

    try:
        start = _resolve_start(data)
    except (ValueError, TypeError):
        return _error("Invalid appointment date or time", 400)
    if start is None:
        return _error("Missing required fields: date", 400)

    status = data.get("status", "pending")
    if status not in APPOINTMENT_STATUSES:
        return _error(f"status must be one of: {', '.join(APPOINTMENT_STATUSES)}", 400)

    try:
        pet = db.session.get(Pet, int(pet_id))
        if not pet:
            return _error("Pet not found", 404)

        groomer_id = _field(data, "groomerId", "groomer_id")
        if groomer_id is not None:
            groomer = db.session.get(Staff, int(groomer_id))
            if not groomer or groomer.role != "groomer":
                return _error("Groomer not found", 404)

        services, unknown = _load_services(service_ids)
        if unknown:
            return _error(f"Unknown service ids: {unknown}", 400)

        total_duration, total_price = compute_totals(services, [s.id for s in services])
        end = start + datetime.timedelta(minutes=total_duration)

        if groomer_id is not None and status != "cancelled":
            clashes = overlapping_appointments(int(groomer_id), start, end)
            if clashes:
                return _error(
                    "This time slot conflicts with another appointment",
                    409,
                    conflicts=[c.id for c in clashes],
                )

        appointment = Appointment(
            customer_id=pet.customer_id,
            pet_id=pet.id,
            groomer_id=int(groomer_id) if groomer_id is not None else None,
            date=to_naive_utc(start),
            end_at=to_naive_utc(end),
            status=status,
            notes=data.get("notes"),
            total_duration=total_duration,
            total_price=total_price,
        )
        _set_services(appointment, services)

        db.session.add(appointment)
        db.session.commit()
        logger.info("Appointment %s booked for pet %s", appointment.id, pet.id)

        return jsonify(serialize_appointment(appointment)), 201

    except (TypeError, ValueError):
        db.session.rollback()
        return _error("petId and groomerId must be integers", 400)
    except Exception as e:
        db.session.rollback()
        logger.exception("Failed to create appointment")
        return _error("Database error", 500, details=str(e))


@appointments_bp.route("/groomers/<int:groomer_id>/available-times", methods=["GET"])
@token_required()
def get_groomer_available_times(groomer_id):
    """
    GET /api/appointments/groomers/<groomer_id>/available-times?date=YYYY-MM-DD&duration=MINUTES
    Purpose: Calculate open start times for a groomer on a day, for a given
             total service duration, on a 15-minute grid inside the workday.
    """
    date_str = request.args.get("date")
    if not date_str:
        return _error("Missing required query parameter: 'date' (YYYY-MM-DD)", 400)

    duration_str = request.args.get("duration")
    if not duration_str:
        return _error("Missing required query parameter: 'duration' (in minutes)", 400)

    try:
        selected_date = parse_date(date_str)
        duration_minutes = int(duration_str)
        if duration_minutes <= 0:
            raise ValueError
    except (ValueError, TypeError):
        return _error("Invalid 'date' or 'duration' format.", 400)

    groomer = db.session.get(Staff, groomer_id)
    if not groomer or groomer.role != "groomer":
        return _error("Groomer not found", 404)

    tz = current_app.config.get("BUSINESS_TIMEZONE", "UTC")
    day_start = combine_date_time(date_str, "00:00", tz)
    day_end = day_start + datetime.timedelta(days=1)

    busy = [
        (a.date, a.end_at)
        for a in overlapping_appointments(groomer_id, day_start, day_end)
    ]

    slots = available_slots(
        selected_date,
        duration_minutes,
        busy,
        current_app.config.get("WORKDAY_START", "09:00"),
        current_app.config.get("WORKDAY_END", "18:00"),
        tz,
    )
    return jsonify(slots)
