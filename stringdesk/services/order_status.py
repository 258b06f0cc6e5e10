from ..models import ORDER_STATUSES

STATUS_LABELS = {
    "pending": "Pending",
    "confirmed": "Confirmed",
    "processing": "Processing",
    "received": "Received",
    "in_progress": "In Progress",
    "ready": "Ready for Pickup",
    "completed": "Completed",
    "picked_up": "Picked Up",
    "cancelled": "Cancelled",
    "payment_rejected": "Payment Rejected",
}

# Statuses an admin may set directly from the back office
ADMIN_SETTABLE_STATUSES = (
    "pending",
    "confirmed",
    "processing",
    "in_progress",
    "ready",
    "completed",
    "picked_up",
    "cancelled",
)

OPEN_STATUSES = ("pending", "confirmed", "processing", "received", "in_progress")
FINAL_STATUSES = ("completed", "picked_up", "cancelled")


def format_status_label(status):
    """Human readable label for an order status; unknown values pass through."""
    return STATUS_LABELS.get(status, status)


def validate_order_status(status):
    return status in ORDER_STATUSES


def validate_admin_status(status):
    return status in ADMIN_SETTABLE_STATUSES
