from ..services.order_status import format_status_label


def iso(value):
    return value.isoformat() if value else None


def serialize_user(user):
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "phone": user.phone,
        "role": user.role,
        "points": user.points,
        "membership_tier": user.membership_tier,
        "referral_code": user.referral_code,
        "created_at": iso(user.created_at),
    }


def serialize_string(item, include_cost=False):
    data = {
        "id": item.id,
        "brand": item.brand,
        "model": item.model,
        "name": item.display_name,
        "color": item.color,
        "gauge": item.gauge,
        "description": item.description,
        "image_url": item.image_url,
        "selling_price": item.selling_price,
        "stock": item.stock,
        "in_stock": item.stock > 0,
        "active": item.active,
    }
    if include_cost:
        data["cost_price"] = item.cost_price
        data["minimum_stock"] = item.minimum_stock
        data["low_stock"] = item.stock <= item.minimum_stock
    return data


def serialize_order_item(item):
    return {
        "id": item.id,
        "string_id": item.string_id,
        "string_name": item.string.display_name if item.string else None,
        "tension_vertical": item.tension_vertical,
        "tension_horizontal": item.tension_horizontal,
        "racket_brand": item.racket_brand,
        "racket_model": item.racket_model,
        "racket_photo": item.racket_photo,
        "notes": item.notes,
        "price": item.price,
    }


def serialize_order_photo(photo):
    return {
        "id": photo.id,
        "order_id": photo.order_id,
        "photo_url": photo.photo_url,
        "photo_type": photo.photo_type,
        "caption": photo.caption,
        "display_order": photo.display_order,
        "created_at": iso(photo.created_at),
    }


def serialize_payment(payment):
    return {
        "id": payment.id,
        "user_id": payment.user_id,
        "order_id": payment.order_id,
        "package_id": payment.package_id,
        "amount": payment.amount,
        "provider": payment.provider,
        "status": payment.status,
        "transaction_id": payment.transaction_id,
        "proof_url": payment.proof_url,
        "reject_reason": payment.reject_reason,
        "metadata": payment.details or {},
        "verified_at": iso(payment.verified_at),
        "created_at": iso(payment.created_at),
    }


def serialize_order(order, include_admin=False):
    data = {
        "id": order.id,
        "user_id": order.user_id,
        "string_id": order.string_id,
        "string_name": order.string.display_name if order.string else None,
        "tension_vertical": order.tension_vertical,
        "tension_horizontal": order.tension_horizontal,
        "racket_brand": order.racket_brand,
        "racket_model": order.racket_model,
        "racket_count": order.racket_count,
        "price": order.price,
        "original_price": order.original_price,
        "discount_amount": order.discount_amount,
        "status": order.status,
        "status_label": format_status_label(order.status),
        "use_package": order.use_package,
        "user_package_id": order.user_package_id,
        "user_voucher_id": order.user_voucher_id,
        "notes": order.notes,
        "estimated_completion_at": iso(order.estimated_completion_at),
        "completed_at": iso(order.completed_at),
        "created_at": iso(order.created_at),
        "updated_at": iso(order.updated_at),
        "items": [serialize_order_item(i) for i in order.items],
        "payments": [serialize_payment(p) for p in order.payments],
        "has_review": order.review is not None,
    }
    if include_admin:
        data["cost"] = order.cost
        data["profit"] = order.profit
        data["customer"] = {
            "id": order.user.id,
            "full_name": order.user.full_name,
            "email": order.user.email,
            "phone": order.user.phone,
        }
        data["overdue_flagged_at"] = iso(order.overdue_flagged_at)
        data["status_history"] = [
            {
                "status": log.status,
                "note": log.note,
                "changed_by_id": log.changed_by_id,
                "created_at": iso(log.created_at),
            }
            for log in order.status_logs
        ]
    return data


def serialize_package(package, renewal_discount=0, final_price=None):
    return {
        "id": package.id,
        "name": package.name,
        "description": package.description,
        "times": package.times,
        "price": package.price,
        "validity_days": package.validity_days,
        "is_first_order_only": package.is_first_order_only,
        "renewal_discount": package.renewal_discount,
        "featured": package.featured,
        "active": package.active,
        "applied_renewal_discount": renewal_discount,
        "final_price": package.price if final_price is None else final_price,
    }


def serialize_user_package(user_package):
    return {
        "id": user_package.id,
        "package_id": user_package.package_id,
        "package_name": user_package.package.name if user_package.package else None,
        "remaining": user_package.remaining,
        "total": user_package.package.times if user_package.package else None,
        "status": user_package.status,
        "expiry": iso(user_package.expiry),
        "payment_id": user_package.payment_id,
        "created_at": iso(user_package.created_at),
    }


def serialize_voucher(voucher):
    return {
        "id": voucher.id,
        "code": voucher.code,
        "name": voucher.name,
        "description": voucher.description,
        "type": voucher.type,
        "value": voucher.value,
        "min_purchase": voucher.min_purchase,
        "max_uses": voucher.max_uses,
        "used_count": voucher.used_count,
        "max_redemptions_per_user": voucher.max_redemptions_per_user,
        "points_cost": voucher.points_cost,
        "valid_from": iso(voucher.valid_from),
        "valid_until": iso(voucher.valid_until),
        "validity_days": voucher.validity_days,
        "is_first_order_only": voucher.is_first_order_only,
        "is_auto_issue": voucher.is_auto_issue,
        "active": voucher.active,
    }


def serialize_user_voucher(user_voucher):
    return {
        "id": user_voucher.id,
        "voucher_id": user_voucher.voucher_id,
        "status": user_voucher.status,
        "expiry": iso(user_voucher.expiry),
        "used_at": iso(user_voucher.used_at),
        "order_id": user_voucher.order_id,
        "voucher": serialize_voucher(user_voucher.voucher),
    }


def serialize_points_log(log):
    return {
        "id": log.id,
        "amount": log.amount,
        "type": log.type,
        "reference_id": log.reference_id,
        "description": log.description,
        "balance_after": log.balance_after,
        "created_at": iso(log.created_at),
    }


def serialize_notification(notification):
    return {
        "id": notification.id,
        "title": notification.title,
        "message": notification.message,
        "type": notification.type,
        "action_url": notification.action_url,
        "read": notification.read,
        "created_at": iso(notification.created_at),
    }


def serialize_review(review):
    return {
        "id": review.id,
        "order_id": review.order_id,
        "user_id": review.user_id,
        "user_name": review.user.full_name if review.user else None,
        "rating": review.rating,
        "comment": review.comment,
        "photos": review.photos or [],
        "featured": review.featured,
        "admin_reply": review.admin_reply,
        "replied_at": iso(review.replied_at),
        "created_at": iso(review.created_at),
    }


def serialize_stock_log(log):
    return {
        "id": log.id,
        "string_id": log.string_id,
        "change": log.change,
        "type": log.type,
        "reason": log.reason,
        "order_id": log.order_id,
        "stock_after": log.stock_after,
        "created_by_id": log.created_by_id,
        "created_at": iso(log.created_at),
    }
