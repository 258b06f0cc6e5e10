"""
Swagger/OpenAPI configuration for the StringDesk API
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
        "title": "StringDesk API",
        "description": "REST API for a badminton racket restringing shop: orders, payments, prepaid packages, vouchers, loyalty points, referrals, reviews and the admin back office",
        "contact": {"email": "support@stringdesk.app"},
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
        {"name": "Authentication", "description": "Signup, login and profile"},
        {"name": "Inventory", "description": "String catalog"},
        {"name": "Orders", "description": "Restringing orders"},
        {"name": "Payments", "description": "Receipts, cash and TNG gateway callbacks"},
        {"name": "Packages", "description": "Prepaid restringing packages"},
        {"name": "Vouchers", "description": "Voucher wallet and redemption"},
        {"name": "Loyalty", "description": "Points, referrals, badges and membership"},
        {"name": "Reviews", "description": "Order reviews"},
        {"name": "Notifications", "description": "In-app notifications"},
        {"name": "Admin Orders", "description": "Order processing"},
        {"name": "Admin Payments", "description": "Payment verification"},
        {"name": "Admin Inventory", "description": "String stock management"},
        {"name": "Admin Packages", "description": "Package management"},
        {"name": "Admin Vouchers", "description": "Voucher management"},
        {"name": "Admin Users", "description": "Customers, points and reviews"},
        {"name": "Admin Cron", "description": "Order automation sweep"},
        {"name": "Admin Analytics", "description": "Dashboard metrics"},
        {"name": "Admin Reports", "description": "Excel exports"},
        {"name": "Utility", "description": "Status and health"},
    ],
    "definitions": {
        "Error": {
            "type": "object",
            "properties": {
                "success": {"type": "boolean", "example": False},
                "error": {
                    "type": "object",
                    "properties": {
                        "code": {"type": "string", "example": "BAD_REQUEST"},
                        "message": {"type": "string"},
                        "details": {"type": "object"},
                    },
                },
            },
        },
        "Success": {
            "type": "object",
            "properties": {
                "success": {"type": "boolean", "example": True},
                "data": {"type": "object"},
                "message": {"type": "string"},
            },
        },
        "User": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "email": {"type": "string", "format": "email"},
                "full_name": {"type": "string"},
                "phone": {"type": "string"},
                "role": {"type": "string", "enum": ["customer", "admin"]},
                "points": {"type": "integer"},
                "membership_tier": {"type": "string", "enum": ["SILVER", "GOLD", "VIP"]},
                "referral_code": {"type": "string"},
            },
        },
        "String": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "brand": {"type": "string", "example": "Yonex"},
                "model": {"type": "string", "example": "BG66 Ultimax"},
                "selling_price": {"type": "number", "format": "float"},
                "stock": {"type": "integer"},
                "in_stock": {"type": "boolean"},
            },
        },
        "Order": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "status": {"type": "string", "example": "pending"},
                "status_label": {"type": "string", "example": "Pending"},
                "racket_count": {"type": "integer"},
                "price": {"type": "number", "format": "float"},
                "original_price": {"type": "number", "format": "float"},
                "discount_amount": {"type": "number", "format": "float"},
                "use_package": {"type": "boolean"},
                "estimated_completion_at": {"type": "string", "format": "date-time"},
                "created_at": {"type": "string", "format": "date-time"},
            },
        },
        "Payment": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "order_id": {"type": "integer"},
                "package_id": {"type": "integer"},
                "amount": {"type": "number", "format": "float"},
                "provider": {"type": "string", "enum": ["manual", "tng", "cash"]},
                "status": {"type": "string", "example": "pending_verification"},
                "proof_url": {"type": "string"},
            },
        },
    },
}
