from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DECIMAL,
    DateTime,
    Enum,
    ForeignKeyConstraint,
    Index,
    Integer,
    JSON,
    LargeBinary,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()
metadata = Base.metadata

ORDER_STATUSES = (
    "pending",
    "confirmed",
    "processing",
    "received",
    "in_progress",
    "ready",
    "completed",
    "picked_up",
    "cancelled",
    "payment_rejected",
)
PAYMENT_STATUSES = (
    "pending",
    "pending_verification",
    "success",
    "rejected",
    "cancelled",
    "failed",
)
PAYMENT_PROVIDERS = ("manual", "tng", "cash", "pending")


def Money():
    return DECIMAL(10, 2, asdecimal=False)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        ForeignKeyConstraint(
            ["referred_by_id"], ["users.id"], ondelete="SET NULL", name="users_ibfk_1"
        ),
        Index("users_email", "email", unique=True),
        Index("users_referral_code", "referral_code", unique=True),
    )

    id = mapped_column(Integer, primary_key=True)
    email = mapped_column(String(255), nullable=False)
    password_hash = mapped_column(LargeBinary(72), nullable=False)
    full_name = mapped_column(String(120), nullable=False)
    phone = mapped_column(String(32))
    role = mapped_column(Enum("customer", "admin"), nullable=False, default="customer")
    points = mapped_column(Integer, nullable=False, default=0)
    membership_tier = mapped_column(String(16), nullable=False, default="SILVER")
    referral_code = mapped_column(String(16))
    referred_by_id = mapped_column(Integer)
    created_at = mapped_column(DateTime, default=datetime.now)
    updated_at = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    orders: Mapped[List["Order"]] = relationship(
        "Order", uselist=True, back_populates="user"
    )
    user_packages: Mapped[List["UserPackage"]] = relationship(
        "UserPackage", uselist=True, back_populates="user"
    )
    user_vouchers: Mapped[List["UserVoucher"]] = relationship(
        "UserVoucher", uselist=True, back_populates="user"
    )
    points_logs: Mapped[List["PointsLog"]] = relationship(
        "PointsLog", uselist=True, back_populates="user"
    )
    notifications: Mapped[List["Notification"]] = relationship(
        "Notification", uselist=True, back_populates="user"
    )

    @property
    def is_admin(self):
        return self.role == "admin"


class StringInventory(Base):
    __tablename__ = "string_inventory"
    __table_args__ = {"comment": "Badminton strings available for stringing jobs."}

    id = mapped_column(Integer, primary_key=True)
    brand = mapped_column(String(64), nullable=False)
    model = mapped_column(String(120), nullable=False)
    color = mapped_column(String(32))
    gauge = mapped_column(String(16))
    description = mapped_column(Text)
    image_url = mapped_column(String(500))
    cost_price = mapped_column(Money(), nullable=False, default=0)
    selling_price = mapped_column(Money(), nullable=False, default=35.0)
    stock = mapped_column(Integer, nullable=False, default=0)
    minimum_stock = mapped_column(Integer, nullable=False, default=5)
    active = mapped_column(Boolean, nullable=False, default=True)
    created_at = mapped_column(DateTime, default=datetime.now)
    updated_at = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    stock_logs: Mapped[List["StockLog"]] = relationship(
        "StockLog", uselist=True, back_populates="string"
    )

    @property
    def display_name(self):
        return f"{self.brand} {self.model}"


class Package(Base):
    __tablename__ = "packages"

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(120), nullable=False)
    description = mapped_column(Text)
    times = mapped_column(Integer, nullable=False)
    price = mapped_column(Money(), nullable=False)
    validity_days = mapped_column(Integer, nullable=False, default=365)
    is_first_order_only = mapped_column(Boolean, nullable=False, default=False)
    renewal_discount = mapped_column(Money(), nullable=False, default=0)
    featured = mapped_column(Boolean, nullable=False, default=False)
    active = mapped_column(Boolean, nullable=False, default=True)
    created_at = mapped_column(DateTime, default=datetime.now)
    updated_at = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    user_packages: Mapped[List["UserPackage"]] = relationship(
        "UserPackage", uselist=True, back_populates="package"
    )


class UserPackage(Base):
    __tablename__ = "user_packages"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE", name="user_packages_ibfk_1"
        ),
        ForeignKeyConstraint(
            ["package_id"], ["packages.id"], name="user_packages_ibfk_2"
        ),
        # payment_id is not a foreign key: payments -> orders -> user_packages
        Index("user_packages_payment", "payment_id", unique=True),
        Index("user_packages_user", "user_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    user_id = mapped_column(Integer, nullable=False)
    package_id = mapped_column(Integer, nullable=False)
    payment_id = mapped_column(Integer)
    remaining = mapped_column(Integer, nullable=False)
    status = mapped_column(
        Enum("active", "depleted", "expired"), nullable=False, default="active"
    )
    expiry = mapped_column(DateTime, nullable=False)
    renewal_reminder_sent_at = mapped_column(DateTime)
    created_at = mapped_column(DateTime, default=datetime.now)
    updated_at = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    user: Mapped["User"] = relationship("User", back_populates="user_packages")
    package: Mapped["Package"] = relationship(
        "Package", back_populates="user_packages"
    )


class Voucher(Base):
    __tablename__ = "vouchers"
    __table_args__ = (Index("vouchers_code", "code", unique=True),)

    id = mapped_column(Integer, primary_key=True)
    code = mapped_column(String(32), nullable=False)
    name = mapped_column(String(120), nullable=False)
    description = mapped_column(Text)
    type = mapped_column(Enum("percentage", "fixed"), nullable=False)
    value = mapped_column(Money(), nullable=False)
    min_purchase = mapped_column(Money(), nullable=False, default=0)
    max_uses = mapped_column(Integer)
    used_count = mapped_column(Integer, nullable=False, default=0)
    max_redemptions_per_user = mapped_column(Integer, nullable=False, default=1)
    points_cost = mapped_column(Integer, nullable=False, default=0)
    valid_from = mapped_column(DateTime, nullable=False, default=datetime.now)
    valid_until = mapped_column(DateTime, nullable=False)
    validity_days = mapped_column(Integer)
    is_first_order_only = mapped_column(Boolean, nullable=False, default=False)
    is_auto_issue = mapped_column(Boolean, nullable=False, default=False)
    active = mapped_column(Boolean, nullable=False, default=True)
    created_at = mapped_column(DateTime, default=datetime.now)
    updated_at = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    user_vouchers: Mapped[List["UserVoucher"]] = relationship(
        "UserVoucher", uselist=True, back_populates="voucher"
    )


class UserVoucher(Base):
    __tablename__ = "user_vouchers"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE", name="user_vouchers_ibfk_1"
        ),
        ForeignKeyConstraint(
            ["voucher_id"], ["vouchers.id"], name="user_vouchers_ibfk_2"
        ),
        Index("user_vouchers_user", "user_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    user_id = mapped_column(Integer, nullable=False)
    voucher_id = mapped_column(Integer, nullable=False)
    status = mapped_column(
        Enum("active", "used", "expired"), nullable=False, default="active"
    )
    expiry = mapped_column(DateTime, nullable=False)
    used_at = mapped_column(DateTime)
    order_id = mapped_column(Integer)
    created_at = mapped_column(DateTime, default=datetime.now)

    user: Mapped["User"] = relationship("User", back_populates="user_vouchers")
    voucher: Mapped["Voucher"] = relationship(
        "Voucher", back_populates="user_vouchers"
    )


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE", name="orders_ibfk_1"
        ),
        ForeignKeyConstraint(
            ["string_id"], ["string_inventory.id"], name="orders_ibfk_2"
        ),
        ForeignKeyConstraint(
            ["user_package_id"], ["user_packages.id"], name="orders_ibfk_3"
        ),
        ForeignKeyConstraint(
            ["user_voucher_id"], ["user_vouchers.id"], name="orders_ibfk_4"
        ),
        Index("orders_user", "user_id"),
        Index("orders_status", "status"),
    )

    id = mapped_column(Integer, primary_key=True)
    user_id = mapped_column(Integer, nullable=False)
    string_id = mapped_column(Integer)
    tension_vertical = mapped_column(Integer)
    tension_horizontal = mapped_column(Integer)
    racket_brand = mapped_column(String(64))
    racket_model = mapped_column(String(120))
    racket_count = mapped_column(Integer, nullable=False, default=1)
    price = mapped_column(Money(), nullable=False, default=0)
    original_price = mapped_column(Money(), nullable=False, default=0)
    discount_amount = mapped_column(Money(), nullable=False, default=0)
    cost = mapped_column(Money(), nullable=False, default=0)
    profit = mapped_column(Money())
    status = mapped_column(String(32), nullable=False, default="pending")
    use_package = mapped_column(Boolean, nullable=False, default=False)
    user_package_id = mapped_column(Integer)
    user_voucher_id = mapped_column(Integer)
    notes = mapped_column(Text)
    estimated_completion_at = mapped_column(DateTime)
    status_updated_at = mapped_column(DateTime, default=datetime.now)
    completed_at = mapped_column(DateTime)
    overdue_flagged_at = mapped_column(DateTime)
    pickup_reminder_sent_at = mapped_column(DateTime)
    created_at = mapped_column(DateTime, default=datetime.now)
    updated_at = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    user: Mapped["User"] = relationship("User", back_populates="orders")
    string: Mapped[Optional["StringInventory"]] = relationship("StringInventory")
    user_package: Mapped[Optional["UserPackage"]] = relationship("UserPackage")
    user_voucher: Mapped[Optional["UserVoucher"]] = relationship(
        "UserVoucher", foreign_keys=[user_voucher_id]
    )
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        uselist=True,
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    payments: Mapped[List["Payment"]] = relationship(
        "Payment", uselist=True, back_populates="order", order_by="Payment.id"
    )
    status_logs: Mapped[List["OrderStatusLog"]] = relationship(
        "OrderStatusLog",
        uselist=True,
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusLog.id",
    )
    photos: Mapped[List["OrderPhoto"]] = relationship(
        "OrderPhoto",
        uselist=True,
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderPhoto.display_order",
    )
    review: Mapped[Optional["Review"]] = relationship(
        "Review", uselist=False, back_populates="order"
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        ForeignKeyConstraint(
            ["order_id"], ["orders.id"], ondelete="CASCADE", name="order_items_ibfk_1"
        ),
        ForeignKeyConstraint(
            ["string_id"], ["string_inventory.id"], name="order_items_ibfk_2"
        ),
    )

    id = mapped_column(Integer, primary_key=True)
    order_id = mapped_column(Integer, nullable=False)
    string_id = mapped_column(Integer, nullable=False)
    tension_vertical = mapped_column(Integer, nullable=False)
    tension_horizontal = mapped_column(Integer, nullable=False)
    racket_brand = mapped_column(String(64))
    racket_model = mapped_column(String(120))
    racket_photo = mapped_column(String(500))
    notes = mapped_column(Text)
    price = mapped_column(Money(), nullable=False, default=0)
    cost = mapped_column(Money(), nullable=False, default=0)

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    string: Mapped["StringInventory"] = relationship("StringInventory")


class OrderPhoto(Base):
    __tablename__ = "order_photos"
    __table_args__ = (
        ForeignKeyConstraint(
            ["order_id"], ["orders.id"], ondelete="CASCADE", name="order_photos_ibfk_1"
        ),
        Index("order_photos_order", "order_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    order_id = mapped_column(Integer, nullable=False)
    photo_url = mapped_column(String(500), nullable=False)
    photo_type = mapped_column(
        Enum("before", "after", "detail", "other"), nullable=False, default="after"
    )
    caption = mapped_column(String(255))
    display_order = mapped_column(Integer, nullable=False, default=0)
    created_at = mapped_column(DateTime, default=datetime.now)

    order: Mapped["Order"] = relationship("Order", back_populates="photos")


class OrderStatusLog(Base):
    __tablename__ = "order_status_logs"
    __table_args__ = (
        ForeignKeyConstraint(
            ["order_id"],
            ["orders.id"],
            ondelete="CASCADE",
            name="order_status_logs_ibfk_1",
        ),
    )

    id = mapped_column(Integer, primary_key=True)
    order_id = mapped_column(Integer, nullable=False)
    status = mapped_column(String(32), nullable=False)
    note = mapped_column(Text)
    changed_by_id = mapped_column(Integer)
    created_at = mapped_column(DateTime, default=datetime.now)

    order: Mapped["Order"] = relationship("Order", back_populates="status_logs")


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE", name="payments_ibfk_1"
        ),
        ForeignKeyConstraint(["order_id"], ["orders.id"], name="payments_ibfk_2"),
        ForeignKeyConstraint(["package_id"], ["packages.id"], name="payments_ibfk_3"),
        Index("payments_status", "status"),
        Index("payments_transaction", "transaction_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    user_id = mapped_column(Integer, nullable=False)
    order_id = mapped_column(Integer)
    package_id = mapped_column(Integer)
    amount = mapped_column(Money(), nullable=False)
    provider = mapped_column(String(16), nullable=False, default="manual")
    status = mapped_column(String(32), nullable=False, default="pending")
    transaction_id = mapped_column(String(128))
    proof_url = mapped_column(String(500))
    reject_reason = mapped_column(Text)
    details = mapped_column("metadata", JSON)
    verified_by_id = mapped_column(Integer)
    verified_at = mapped_column(DateTime)
    created_at = mapped_column(DateTime, default=datetime.now)
    updated_at = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    user: Mapped["User"] = relationship("User")
    order: Mapped[Optional["Order"]] = relationship("Order", back_populates="payments")
    package: Mapped[Optional["Package"]] = relationship("Package")


class PointsLog(Base):
    __tablename__ = "points_logs"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE", name="points_logs_ibfk_1"
        ),
        Index("points_logs_user", "user_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    user_id = mapped_column(Integer, nullable=False)
    amount = mapped_column(Integer, nullable=False)
    type = mapped_column(String(32), nullable=False)
    reference_id = mapped_column(String(64))
    description = mapped_column(String(255))
    balance_after = mapped_column(Integer, nullable=False)
    created_at = mapped_column(DateTime, default=datetime.now)

    user: Mapped["User"] = relationship("User", back_populates="points_logs")


class ReferralLog(Base):
    __tablename__ = "referral_logs"
    __table_args__ = (
        ForeignKeyConstraint(
            ["referrer_id"], ["users.id"], ondelete="CASCADE", name="referral_logs_ibfk_1"
        ),
        ForeignKeyConstraint(
            ["referred_id"], ["users.id"], ondelete="CASCADE", name="referral_logs_ibfk_2"
        ),
        Index("referral_logs_referred", "referred_id", unique=True),
    )

    id = mapped_column(Integer, primary_key=True)
    referrer_id = mapped_column(Integer, nullable=False)
    referred_id = mapped_column(Integer, nullable=False)
    referrer_points = mapped_column(Integer, nullable=False)
    referred_points = mapped_column(Integer, nullable=False)
    created_at = mapped_column(DateTime, default=datetime.now)

    referrer: Mapped["User"] = relationship("User", foreign_keys=[referrer_id])
    referred: Mapped["User"] = relationship("User", foreign_keys=[referred_id])


class UserBadge(Base):
    __tablename__ = "user_badges"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE", name="user_badges_ibfk_1"
        ),
        Index("user_badges_unique", "user_id", "badge_type", unique=True),
    )

    id = mapped_column(Integer, primary_key=True)
    user_id = mapped_column(Integer, nullable=False)
    badge_type = mapped_column(String(32), nullable=False)
    created_at = mapped_column(DateTime, default=datetime.now)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE", name="notifications_ibfk_1"
        ),
        Index("notifications_user", "user_id", "read"),
    )

    id = mapped_column(Integer, primary_key=True)
    user_id = mapped_column(Integer, nullable=False)
    title = mapped_column(String(255), nullable=False)
    message = mapped_column(Text, nullable=False)
    type = mapped_column(String(32), nullable=False, default="system")
    action_url = mapped_column(String(255))
    read = mapped_column(Boolean, nullable=False, default=False)
    created_at = mapped_column(DateTime, default=datetime.now)

    user: Mapped["User"] = relationship("User", back_populates="notifications")


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        ForeignKeyConstraint(
            ["order_id"], ["orders.id"], ondelete="CASCADE", name="reviews_ibfk_1"
        ),
        ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE", name="reviews_ibfk_2"
        ),
        Index("reviews_order", "order_id", unique=True),
    )

    id = mapped_column(Integer, primary_key=True)
    order_id = mapped_column(Integer, nullable=False)
    user_id = mapped_column(Integer, nullable=False)
    rating = mapped_column(Integer, nullable=False)
    comment = mapped_column(Text, nullable=False)
    photos = mapped_column(JSON)
    featured = mapped_column(Boolean, nullable=False, default=False)
    admin_reply = mapped_column(Text)
    replied_at = mapped_column(DateTime)
    created_at = mapped_column(DateTime, default=datetime.now)

    order: Mapped["Order"] = relationship("Order", back_populates="review")
    user: Mapped["User"] = relationship("User")


class StockLog(Base):
    __tablename__ = "stock_logs"
    __table_args__ = (
        ForeignKeyConstraint(
            ["string_id"],
            ["string_inventory.id"],
            ondelete="CASCADE",
            name="stock_logs_ibfk_1",
        ),
        Index("stock_logs_order", "order_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    string_id = mapped_column(Integer, nullable=False)
    change = mapped_column(Integer, nullable=False)
    type = mapped_column(
        Enum("sale", "return", "restock", "adjustment"), nullable=False
    )
    reason = mapped_column(String(255))
    order_id = mapped_column(Integer)
    stock_after = mapped_column(Integer, nullable=False)
    created_by_id = mapped_column(Integer)
    created_at = mapped_column(DateTime, default=datetime.now)

    string: Mapped["StringInventory"] = relationship(
        "StringInventory", back_populates="stock_logs"
    )
