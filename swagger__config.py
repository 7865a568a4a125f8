"""
Swagger/OpenAPI configuration for the Grooming Admin API
"""

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec",
            "route": "/apispec.json",
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/api/docs",
}

SWAGGER_TEMPLATE = {
    "swagger": "2.0",
    "info": {
        "title": "Grooming Admin API",
        "description": "Appointments, services, staff and consumable inventory for a pet grooming business",
        "version": "1.0.0",
    },
    "host": "",
    "basePath": "/",
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": 'JWT Authorization header using the Bearer scheme. Example: "Authorization: Bearer {token}"',
        }
    },
    "security": [{"Bearer": []}],
    "tags": [
        {"name": "Authentication", "description": "Token issue and refresh"},
        {"name": "Appointments", "description": "Appointment booking and editing"},
        {"name": "Inventory", "description": "Consumable stock and usage history"},
        {"name": "Services", "description": "Grooming services catalog"},
        {"name": "Staff", "description": "Staff members and groomers"},
        {"name": "Utility", "description": "Health and diagnostics"},
    ],
    "definitions": {
        "Error": {
            "type": "object",
            "properties": {
                "status": {"type": "string", "example": "error"},
                "message": {"type": "string"},
                "details": {"type": "string"},
            },
        },
        "Service": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "name": {"type": "string"},
                "category": {"type": "string", "enum": ["Service", "Addon", "Package"]},
                "price": {"type": "number", "format": "float"},
                "duration": {"type": "integer", "minimum": 15},
                "is_active": {"type": "boolean"},
                "consumables": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "item_id": {"type": "integer"},
                            "item_name": {"type": "string"},
                            "quantity_used": {"type": "number"},
                        },
                    },
                },
            },
        },
        "AppointmentUpdate": {
            "type": "object",
            "properties": {
                "status": {
                    "type": "string",
                    "enum": ["pending", "confirmed", "completed", "cancelled"],
                },
                "notes": {"type": "string"},
                "appointmentDate": {"type": "string", "example": "2024-06-01"},
                "appointmentTime": {"type": "string", "example": "14:30"},
                "date": {
                    "type": "string",
                    "format": "date-time",
                    "example": "2024-06-01T14:30:00Z",
                },
                "groomerId": {"type": "integer"},
                "services": {"type": "array", "items": {"type": "integer"}},
                "totalDuration": {"type": "integer"},
                "totalPrice": {"type": "number", "format": "float"},
            },
        },
        "UsageRecord": {
            "type": "object",
            "required": ["item_id", "quantity_used"],
            "properties": {
                "item_id": {"type": "integer"},
                "quantity_used": {"type": "number", "example": 2},
                "service_id": {"type": "integer"},
                "appointment_id": {"type": "integer"},
                "used_by": {"type": "string"},
                "notes": {"type": "string", "example": "Used in appointment 12"},
            },
        },
    },
}
