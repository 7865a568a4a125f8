# Inventory ledger: consumable stock levels and usage history
import datetime
import logging

from flask import Blueprint, g, jsonify, request
from sqlalchemy import func, select

from app.extensions import db
from ...models import Appointment, InventoryItem, InventoryUsage
from ...utils.auth_utils import token_required
from ...utils.scheduling import format_instant

logger = logging.getLogger(__name__)

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

ITEM_FIELDS = (
    "name",
    "description",
    "category",
    "unit",
    "quantity",
    "minimum_quantity",
    "cost_per_unit",
    "supplier",
    "is_active",
    "last_restock_date",
)


def serialize_item(item):
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "category": item.category,
        "unit": item.unit,
        "quantity": item.quantity,
        "minimum_quantity": item.minimum_quantity,
        "cost_per_unit": float(item.cost_per_unit) if item.cost_per_unit is not None else 0.0,
        "supplier": item.supplier,
        "is_active": bool(item.is_active),
        "is_low_stock": item.quantity <= item.minimum_quantity,
        "last_restock_date": (
            item.last_restock_date.isoformat() if item.last_restock_date else None
        ),
        "created_at": item.created_at.isoformat() if item.created_at else None,
        "updated_at": item.updated_at.isoformat() if item.updated_at else None,
    }


def serialize_usage(usage):
    return {
        "id": usage.id,
        "item_id": usage.item_id,
        "item_name": usage.item.name if usage.item else None,
        "quantity_used": usage.quantity_used,
        "service_id": usage.service_id,
        "appointment_id": usage.appointment_id,
        "used_by": usage.used_by,
        "notes": usage.notes,
        "used_at": format_instant(usage.used_at),
    }


def _error(message, status_code, **extra):
    body = {"status": "error", "message": message}
    body.update(extra)
    return jsonify(body), status_code


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_item_payload(data, partial=False):
    """Return an error message, or None when the payload is acceptable."""
    required = ("name", "category", "unit", "quantity")
    if not partial:
        missing = [f for f in required if data.get(f) in (None, "")]
        if missing:
            return f'Missing required fields: {", ".join(missing)}'

    if "name" in data and (not isinstance(data["name"], str) or len(data["name"].strip()) < 2):
        return "Name must be at least 2 characters"

    for field, label in (
        ("quantity", "Quantity"),
        ("minimum_quantity", "Minimum quantity"),
        ("cost_per_unit", "Cost per unit"),
    ):
        if field in data:
            if not _is_number(data[field]) or data[field] < 0:
                return f"{label} cannot be negative"

    if data.get("last_restock_date"):
        try:
            datetime.date.fromisoformat(data["last_restock_date"])
        except (TypeError, ValueError):
            return "last_restock_date must be YYYY-MM-DD"
    return None


def _apply_item_fields(item, data):
    for field in ITEM_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field == "last_restock_date":
            value = datetime.date.fromisoformat(value) if value else None
        elif field == "is_active":
            value = bool(value)
        setattr(item, field, value)


@inventory_bp.route("", methods=["GET"])
@token_required()
def list_items():
    """
    List inventory items
    ---
    tags:
      - Inventory
    parameters:
      - {in: query, name: category, type: string, required: false}
      - {in: query, name: include_inactive, type: boolean, required: false}
    responses:
      200:
        description: Inventory items ordered by name
    """
    stmt = select(InventoryItem).order_by(InventoryItem.name)

    category = request.args.get("category")
    if category:
        stmt = stmt.where(InventoryItem.category == category)
    if request.args.get("include_inactive") not in ("1", "true", "True"):
        stmt = stmt.where(InventoryItem.is_active.is_(True))

    items = db.session.scalars(stmt).all()
    return jsonify([serialize_item(i) for i in items])


@inventory_bp.route("/low-stock", methods=["GET"])
@token_required()
def list_low_stock():
    """Active items at or below their minimum quantity."""
    stmt = (
        select(InventoryItem)
        .where(
            InventoryItem.is_active.is_(True),
            InventoryItem.quantity <= InventoryItem.minimum_quantity,
        )
        .order_by(InventoryItem.name)
    )
    return jsonify([serialize_item(i) for i in db.session.scalars(stmt).all()])


@inventory_bp.route("/<int:item_id>", methods=["GET"])
@token_required()
def get_item(item_id):
    item = db.session.get(InventoryItem, item_id)
    if not item:
        return _error("Inventory item not found", 404)
    return jsonify(serialize_item(item))


@inventory_bp.route("", methods=["POST"])
@token_required(roles=["admin", "staff"])
def add_item():
    data = request.get_json(silent=True)
    if not data:
        return _error("Request body is required", 400)

    error = _validate_item_payload(data)
    if error:
        return _error(error, 400)

    try:
        item = InventoryItem()
        _apply_item_fields(item, data)
        db.session.add(item)
        db.session.commit()
        logger.info("Inventory item %s added (%s %s)", item.id, item.quantity, item.unit)
        return jsonify(serialize_item(item)), 201
    except Exception as e:
        db.session.rollback()
        logger.exception("Failed to add inventory item")
        return _error("Database error", 500, details=str(e))


@inventory_bp.route("/<int:item_id>", methods=["PUT"])
@token_required(roles=["admin", "staff"])
def update_item(item_id):
    item = db.session.get(InventoryItem, item_id)
    if not item:
        return _error("Inventory item not found", 404)

    data = request.get_json(silent=True)
    if not data:
        return _error("Request body is required", 400)

    error = _validate_item_payload(data, partial=True)
    if error:
        return _error(error, 400)

    try:
        _apply_item_fields(item, data)
        db.session.commit()
        return jsonify(serialize_item(item)), 200
    except Exception as e:
        db.session.rollback()
        logger.exception("Failed to update inventory item %s", item_id)
        return _error("Database error", 500, details=str(e))


@inventory_bp.route("/<int:item_id>", methods=["DELETE"])
@token_required(roles=["admin"])
def delete_item(item_id):
    """
    DELETE /api/inventory/<item_id>
    Items with recorded usage keep their audit trail: they cannot be deleted,
    only deactivated (is_active=false via PUT).
    """
    item = db.session.get(InventoryItem, item_id)
    if not item:
        return _error("Inventory item not found", 404)

    usage_count = db.session.scalar(
        select(func.count(InventoryUsage.id)).where(InventoryUsage.item_id == item_id)
    )
    if usage_count:
        return _error(
            "Item has recorded usage; deactivate it instead of deleting", 400
        )

    db.session.delete(item)
    db.session.commit()
    return jsonify({"status": "success", "message": "Inventory item deleted"}), 200


@inventory_bp.route("/usage", methods=["POST"])
@token_required()
def record_usage():
    """
    Record consumption of an inventory item
    ---
    tags:
      - Inventory
    description: Writes one usage event and decrements stock in the same
        transaction. Calls are not deduplicated.
    parameters:
      - in: body
        name: body
        required: true
        schema:
          $ref: '#/definitions/UsageRecord'
    responses:
      201:
        description: Usage recorded
      400:
        description: Missing fields or non-positive quantity
      404:
        description: Item or appointment not found
      409:
        description: Insufficient quantity available
    """
    data = request.get_json(silent=True)
    if not data:
        return _error("Request body is required", 400)

    item_id = data.get("item_id")
    quantity_used = data.get("quantity_used")
    used_by = data.get("used_by") or g.current_user.get("email")

    if item_id in (None, ""):
        return _error("Missing required fields: item_id", 400)
    if not _is_number(quantity_used) or quantity_used <= 0:
        return _error("Usage quantity must be positive", 400)

    try:
        item = db.session.get(InventoryItem, int(item_id), with_for_update=True)
        if not item or not item.is_active:
            return _error("Inventory item not found", 404)

        appointment_id = data.get("appointment_id")
        if appointment_id not in (None, ""):
            if not db.session.get(Appointment, int(appointment_id)):
                db.session.rollback()
                return _error("Appointment not found", 404)
        else:
            appointment_id = None

        if item.quantity < quantity_used:
            db.session.rollback()
            return _error(
                "Insufficient quantity available",
                409,
                available=item.quantity,
            )

        usage = InventoryUsage(
            item_id=item.id,
            quantity_used=quantity_used,
            service_id=int(data["service_id"]) if data.get("service_id") else None,
            appointment_id=int(appointment_id) if appointment_id is not None else None,
            used_by=str(used_by),
            notes=data.get("notes"),
        )
        item.quantity = item.quantity - quantity_used

        db.session.add(usage)
        db.session.commit()
        logger.info(
            "Recorded usage of %s %s of item %s (appointment %s)",
            quantity_used,
            item.unit,
            item.id,
            appointment_id,
        )
        if item.quantity <= item.minimum_quantity:
            logger.warning("Item %s (%s) is low on stock: %s left", item.id, item.name, item.quantity)

        return jsonify(serialize_usage(usage)), 201

    except (TypeError, ValueError):
        db.session.rollback()
        return _error("item_id, service_id and appointment_id must be integers", 400)
    except Exception as e:
        db.session.rollback()
        logger.exception("Failed to record usage for item %s", item_id)
        return _error("Database error", 500, details=str(e))


@inventory_bp.route("/usage", methods=["GET"])
@token_required()
def list_usage():
    """
    GET /api/inventory/usage?appointment_id=&item_id=
    Purpose: Usage history, newest first.
    """
    stmt = select(InventoryUsage).order_by(
        InventoryUsage.used_at.desc(), InventoryUsage.id.desc()
    )

    appointment_id = request.args.get("appointment_id", type=int)
    if appointment_id is not None:
        stmt = stmt.where(InventoryUsage.appointment_id == appointment_id)

    item_id = request.args.get("item_id", type=int)
    if item_id is not None:
        stmt = stmt.where(InventoryUsage.item_id == item_id)

    return jsonify([serialize_usage(u) for u in db.session.scalars(stmt).all()])
