# Grooming services catalog: the reference data appointments are priced from
import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import select

from app.extensions import db
from ...models import SERVICE_CATEGORIES, InventoryItem, Service, ServiceConsumable
from ...utils.auth_utils import token_required

logger = logging.getLogger(__name__)

services_bp = Blueprint("services", __name__, url_prefix="/api/services")


def serialize_service(service):
    return {
        "id": service.id,
        "name": service.name,
        "description": service.description,
        "category": service.category,
        "duration": service.duration,
        "price": float(service.price) if service.price is not None else None,
        "is_active": bool(service.is_active),
        "consumables": [
            {
                "item_id": c.item_id,
                "item_name": c.item_name,
                "quantity_used": c.quantity_used,
            }
            for c in service.consumables
        ],
    }


@services_bp.route("", methods=["GET"])
@token_required()
def list_services():
    """
    List grooming services
    ---
    tags:
      - Services
    parameters:
      - in: query
        name: include_inactive
        type: boolean
        required: false
    responses:
      200:
        description: List of services
        schema:
          type: array
          items:
            $ref: '#/definitions/Service'
    """
    stmt = select(Service).order_by(Service.category, Service.name)
    if request.args.get("include_inactive") not in ("1", "true", "True"):
        stmt = stmt.where(Service.is_active.is_(True))

    services = db.session.scalars(stmt).all()
    return jsonify([serialize_service(s) for s in services])


@services_bp.route("/<int:service_id>", methods=["GET"])
@token_required()
def get_service(service_id):
    service = db.session.get(Service, service_id)
    if not service:
        return jsonify({"status": "error", "message": "Service not found"}), 404
    return jsonify(serialize_service(service))


def _validate_service_payload(data):
    """Return an error message for an invalid payload, or None."""
    name = data.get("name")
    if not isinstance(name, str) or len(name.strip()) < 2:
        return "Service name must be at least 2 characters"

    duration = data.get("duration")
    if isinstance(duration, bool) or not isinstance(duration, int) or duration < 15:
        return "Duration must be at least 15 minutes"

    price = data.get("price")
    if isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0:
        return "Price cannot be negative"

    if data.get("category", "Service") not in SERVICE_CATEGORIES:
        return f"category must be one of: {', '.join(SERVICE_CATEGORIES)}"

    for line in data.get("consumables") or []:
        if not line.get("item_id"):
            return "Item ID is required"
        quantity = line.get("quantity_used")
        if not isinstance(quantity, (int, float)) or quantity <= 0:
            return "Quantity must be greater than 0"
    return None


@services_bp.route("", methods=["POST"])
@token_required(roles=["admin"])
def create_service():
    """
    Create a grooming service with its default consumables
    ---
    tags:
      - Services
    responses:
      201:
        description: Service created
      400:
        description: Invalid payload
      404:
        description: Consumable inventory item not found
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"status": "error", "message": "Request body is required"}), 400

    error = _validate_service_payload(data)
    if error:
        return jsonify({"status": "error", "message": error}), 400

    try:
        service = Service(
            name=data["name"].strip(),
            description=data.get("description"),
            category=data.get("category", "Service"),
            duration=data["duration"],
            price=data["price"],
            is_active=bool(data.get("is_active", True)),
        )

        for line in data.get("consumables") or []:
            item = db.session.get(InventoryItem, line["item_id"])
            if not item:
                db.session.rollback()
                return (
                    jsonify({"status": "error", "message": "Inventory item not found"}),
                    404,
                )
            service.consumables.append(
                ServiceConsumable(
                    item_id=item.id,
                    item_name=line.get("item_name") or item.name,
                    quantity_used=line["quantity_used"],
                )
            )

        db.session.add(service)
        db.session.commit()
        logger.info("Created service %s (%s)", service.id, service.name)

        return jsonify(serialize_service(service)), 201

    except Exception as e:
        db.session.rollback()
        logger.exception("Failed to create service")
        return jsonify({"status": "error", "message": "Database error", "details": str(e)}), 500
