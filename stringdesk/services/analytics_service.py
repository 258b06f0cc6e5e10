"""
Admin analytics.

Aggregations that depend on calendar buckets (days, months, hours) are done in
pandas over a narrow query result so they behave the same on MySQL and SQLite.
"""

from datetime import datetime, timedelta

import pandas as pd
from flask import current_app
from sqlalchemy import func, select

from ..extensions import db
from ..models import Order, Package, Payment, PointsLog, StringInventory, User, UserPackage
from ..utils.errors import bad_request
from .points_service import summarize_points

COMPLETED_STATUSES = ("completed", "picked_up")
DEFAULT_RANGE_DAYS = 30


def calculate_ltv(total_revenue, unique_users):
    if not unique_users:
        return 0.0
    return round(total_revenue / unique_users, 2)


def parse_date_range(args, now=None):
    """Resolve startDate/endDate/days query args into an inclusive day range."""
    now = now or datetime.now()
    try:
        if args.get("startDate") or args.get("endDate"):
            end = (
                datetime.fromisoformat(args["endDate"]) if args.get("endDate") else now
            )
            start = (
                datetime.fromisoformat(args["startDate"])
                if args.get("startDate")
                else end - timedelta(days=DEFAULT_RANGE_DAYS - 1)
            )
        else:
            days = int(args.get("days", DEFAULT_RANGE_DAYS))
            if days <= 0:
                raise bad_request("days must be positive")
            end = now
            start = now - timedelta(days=days - 1)
    except ValueError:
        raise bad_request("Invalid date range")
    if start > end:
        raise bad_request("startDate must be before endDate")

    start = start.replace(hour=0, minute=0, second=0, microsecond=0)
    end = end.replace(hour=23, minute=59, second=59, microsecond=999999)
    return start, end


def day_keys(start, end):
    return [d.strftime("%Y-%m-%d") for d in pd.date_range(start.date(), end.date())]


def _completed_orders_frame(start=None, end=None):
    query = select(Order.id, Order.user_id, Order.price, Order.created_at).where(
        Order.status.in_(COMPLETED_STATUSES)
    )
    if start:
        query = query.where(Order.created_at >= start)
    if end:
        query = query.where(Order.created_at <= end)
    rows = db.session.execute(query).all()
    return pd.DataFrame(rows, columns=["id", "user_id", "price", "created_at"])


def get_user_ltv():
    df = _completed_orders_frame()
    customers = db.session.scalar(
        select(func.count(User.id)).where(User.role == "customer")
    ) or 0
    revenue = float(df["price"].sum()) if not df.empty else 0.0
    return {
        "ltv": calculate_ltv(revenue, customers),
        "total_revenue": round(revenue, 2),
        "customers": customers,
    }


def get_retention_rate():
    """Share of ordering customers who came back for a second completed order."""
    df = _completed_orders_frame()
    if df.empty:
        return {"retention_rate": 0.0, "returning_customers": 0, "ordering_customers": 0}
    per_user = df.groupby("user_id")["id"].count()
    returning = int((per_user > 1).sum())
    return {
        "retention_rate": round(returning / len(per_user) * 100, 2),
        "returning_customers": returning,
        "ordering_customers": int(len(per_user)),
    }


def get_average_order_value_trend(months=6, now=None):
    now = now or datetime.now()
    first_month = (pd.Timestamp(now).to_period("M") - (months - 1)).to_timestamp()
    df = _completed_orders_frame(start=first_month.to_pydatetime())
    keys = [str(p) for p in pd.period_range(first_month, periods=months, freq="M")]
    if df.empty:
        return [{"month": k, "orders": 0, "revenue": 0.0, "aov": 0.0} for k in keys]

    df["month"] = pd.to_datetime(df["created_at"]).dt.to_period("M").astype(str)
    grouped = df.groupby("month")["price"].agg(["count", "sum"])
    trend = []
    for key in keys:
        count = int(grouped.loc[key, "count"]) if key in grouped.index else 0
        revenue = float(grouped.loc[key, "sum"]) if key in grouped.index else 0.0
        trend.append(
            {
                "month": key,
                "orders": count,
                "revenue": round(revenue, 2),
                "aov": round(revenue / count, 2) if count else 0.0,
            }
        )
    return trend


def get_popular_hours():
    rows = db.session.execute(
        select(Order.created_at).where(Order.status != "cancelled")
    ).all()
    counts = {hour: 0 for hour in range(24)}
    if rows:
        hours = pd.to_datetime(pd.Series([r[0] for r in rows])).dt.hour
        for hour, count in hours.value_counts().items():
            counts[int(hour)] = int(count)
    return [{"hour": h, "orders": c} for h, c in counts.items()]


def get_revenue_by_day(start, end):
    df = _completed_orders_frame(start, end)
    keys = day_keys(start, end)
    series = pd.Series(0.0, index=keys)
    counts = pd.Series(0, index=keys)
    if not df.empty:
        df["day"] = pd.to_datetime(df["created_at"]).dt.strftime("%Y-%m-%d")
        grouped = df.groupby("day")["price"].agg(["sum", "count"])
        series = series.add(grouped["sum"], fill_value=0).reindex(keys, fill_value=0)
        counts = counts.add(grouped["count"], fill_value=0).reindex(keys, fill_value=0)
    return [
        {"date": key, "revenue": round(float(series[key]), 2), "orders": int(counts[key])}
        for key in keys
    ]


def get_top_strings(limit=5):
    rows = db.session.execute(
        select(
            StringInventory.id,
            StringInventory.brand,
            StringInventory.model,
            func.count(Order.id).label("orders"),
        )
        .join(Order, Order.string_id == StringInventory.id)
        .where(Order.status != "cancelled")
        .group_by(StringInventory.id, StringInventory.brand, StringInventory.model)
        .order_by(func.count(Order.id).desc())
        .limit(limit)
    ).all()
    return [
        {"string_id": r.id, "name": f"{r.brand} {r.model}", "orders": r.orders}
        for r in rows
    ]


def get_top_packages(limit=5):
    rows = db.session.execute(
        select(Package.id, Package.name, func.count(UserPackage.id).label("sold"))
        .join(UserPackage, UserPackage.package_id == Package.id)
        .group_by(Package.id, Package.name)
        .order_by(func.count(UserPackage.id).desc())
        .limit(limit)
    ).all()
    return [{"package_id": r.id, "name": r.name, "sold": r.sold} for r in rows]


def _revenue_between(start, end):
    total = db.session.scalar(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(
            Payment.status == "success",
            Payment.verified_at >= start,
            Payment.verified_at <= end,
        )
    )
    return round(float(total or 0), 2)


def _orders_between(start, end):
    return db.session.scalar(
        select(func.count(Order.id)).where(
            Order.created_at >= start,
            Order.created_at <= end,
            Order.status != "cancelled",
        )
    ) or 0


def get_admin_dashboard_stats(now=None):
    now = now or datetime.now()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    month_start = today.replace(day=1)
    threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 5)

    return {
        "today_orders": _orders_between(today, now),
        "today_revenue": _revenue_between(today, now),
        "month_orders": _orders_between(month_start, now),
        "month_revenue": _revenue_between(month_start, now),
        "pending_orders": db.session.scalar(
            select(func.count(Order.id)).where(Order.status == "pending")
        )
        or 0,
        "in_progress_orders": db.session.scalar(
            select(func.count(Order.id)).where(Order.status == "in_progress")
        )
        or 0,
        "pending_payments": db.session.scalar(
            select(func.count(Payment.id)).where(
                Payment.status == "pending_verification"
            )
        )
        or 0,
        "low_stock_count": db.session.scalar(
            select(func.count(StringInventory.id)).where(
                StringInventory.active.is_(True), StringInventory.stock <= threshold
            )
        )
        or 0,
        "active_packages": db.session.scalar(
            select(func.count(UserPackage.id)).where(
                UserPackage.status == "active",
                UserPackage.remaining > 0,
                UserPackage.expiry > now,
            )
        )
        or 0,
        "total_customers": db.session.scalar(
            select(func.count(User.id)).where(User.role == "customer")
        )
        or 0,
    }


def get_points_overview():
    amounts = db.session.scalars(select(PointsLog.amount)).all()
    totals = summarize_points(amounts)
    outstanding = db.session.scalar(select(func.coalesce(func.sum(User.points), 0)))
    return {
        "total_earned": totals["earned"],
        "total_spent": totals["spent"],
        "outstanding_balance": int(outstanding or 0),
    }


def build_report_frames(sections, start, end):
    """DataFrames for the xlsx export, keyed by sheet name."""
    frames = {}
    if sections.get("orders", True):
        rows = db.session.execute(
            select(
                Order.id,
                User.full_name,
                User.email,
                Order.status,
                Order.racket_count,
                Order.price,
                Order.discount_amount,
                Order.cost,
                Order.profit,
                Order.created_at,
                Order.completed_at,
            )
            .join(User, User.id == Order.user_id)
            .where(Order.created_at >= start, Order.created_at <= end)
            .order_by(Order.created_at)
        ).all()
        frames["Orders"] = pd.DataFrame(
            rows,
            columns=[
                "Order ID",
                "Customer",
                "Email",
                "Status",
                "Rackets",
                "Price",
                "Discount",
                "Cost",
                "Profit",
                "Created At",
                "Completed At",
            ],
        )
    if sections.get("revenue", True):
        frames["Revenue"] = pd.DataFrame(get_revenue_by_day(start, end)).rename(
            columns={"date": "Date", "revenue": "Revenue", "orders": "Orders"}
        )
    if sections.get("payments", True):
        rows = db.session.execute(
            select(
                Payment.id,
                Payment.order_id,
                Payment.package_id,
                Payment.provider,
                Payment.status,
                Payment.amount,
                Payment.created_at,
                Payment.verified_at,
            )
            .where(Payment.created_at >= start, Payment.created_at <= end)
            .order_by(Payment.created_at)
        ).all()
        frames["Payments"] = pd.DataFrame(
            rows,
            columns=[
                "Payment ID",
                "Order ID",
                "Package ID",
                "Provider",
                "Status",
                "Amount",
                "Created At",
                "Verified At",
            ],
        )
    if sections.get("inventory", True):
        rows = db.session.execute(
            select(
                StringInventory.id,
                StringInventory.brand,
                StringInventory.model,
                StringInventory.stock,
                StringInventory.cost_price,
                StringInventory.selling_price,
            ).order_by(StringInventory.brand, StringInventory.model)
        ).all()
        frames["Inventory"] = pd.DataFrame(
            rows, columns=["String ID", "Brand", "Model", "Stock", "Cost", "Price"]
        )
    return frames


WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def _period(start, end):
    return {"start": start.strftime("%Y-%m-%d"), "end": end.strftime("%Y-%m-%d")}


def _percent(part, whole):
    return round(part / whole * 100, 2) if whole else 0.0


def _orders_frame(start, end):
    rows = db.session.execute(
        select(
            Order.id,
            Order.user_id,
            Order.string_id,
            Order.status,
            Order.price,
            Order.cost,
            Order.profit,
            Order.user_package_id,
            Order.user_voucher_id,
            Order.created_at,
            Order.completed_at,
        ).where(Order.created_at >= start, Order.created_at <= end)
    ).all()
    df = pd.DataFrame(
        rows,
        columns=[
            "id",
            "user_id",
            "string_id",
            "status",
            "price",
            "cost",
            "profit",
            "user_package_id",
            "user_voucher_id",
            "created_at",
            "completed_at",
        ],
    )
    df["created_at"] = pd.to_datetime(df["created_at"])
    df["completed_at"] = pd.to_datetime(df["completed_at"])
    return df


def _package_revenue_between(start, end):
    total = db.session.scalar(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(
            Payment.package_id.is_not(None),
            Payment.status == "success",
            Payment.verified_at >= start,
            Payment.verified_at <= end,
        )
    )
    return round(float(total or 0), 2)


def get_profit_report(start, end):
    """
    Profit from completed orders grouped by string, plus package sales.

    Orders without a stored profit fall back to price minus cost. Package
    payments have no material cost so they count in full.
    """
    df = _orders_frame(start, end)
    done = df[df["status"].isin(COMPLETED_STATUSES)].copy()
    by_string = []
    order_revenue = order_cost = order_profit = 0.0

    if not done.empty:
        done["price"] = done["price"].astype(float)
        done["cost"] = done["cost"].fillna(0).astype(float)
        done["profit"] = done["profit"].fillna(done["price"] - done["cost"]).astype(float)
        done["string_id"] = done["string_id"].fillna(0).astype(int)
        order_revenue = float(done["price"].sum())
        order_cost = float(done["cost"].sum())
        order_profit = float(done["profit"].sum())

        names = {
            row.id: f"{row.brand} {row.model}"
            for row in db.session.execute(
                select(StringInventory.id, StringInventory.brand, StringInventory.model).where(
                    StringInventory.id.in_(done["string_id"].unique().tolist())
                )
            )
        }
        grouped = (
            done.groupby("string_id")
            .agg(
                orders=("id", "count"),
                revenue=("price", "sum"),
                cost=("cost", "sum"),
                profit=("profit", "sum"),
            )
            .sort_values("profit", ascending=False)
        )
        for string_id, row in grouped.iterrows():
            by_string.append(
                {
                    "string_id": int(string_id) or None,
                    "name": names.get(int(string_id), "Unknown"),
                    "orders": int(row["orders"]),
                    "revenue": round(float(row["revenue"]), 2),
                    "cost": round(float(row["cost"]), 2),
                    "profit": round(float(row["profit"]), 2),
                }
            )

    package_revenue = _package_revenue_between(start, end)
    total_revenue = order_revenue + package_revenue
    total_profit = order_profit + package_revenue
    return {
        "period": _period(start, end),
        "order_revenue": round(order_revenue, 2),
        "order_cost": round(order_cost, 2),
        "order_profit": round(order_profit, 2),
        "package_revenue": package_revenue,
        "total_revenue": round(total_revenue, 2),
        "total_profit": round(total_profit, 2),
        "profit_margin": _percent(total_profit, total_revenue),
        "by_string": by_string,
    }


def get_sales_report(start, end):
    df = _orders_frame(start, end)
    done = df[df["status"].isin(COMPLETED_STATUSES)]
    total = len(df)
    completed = len(done)
    revenue = float(done["price"].astype(float).sum()) if completed else 0.0

    return {
        "period": _period(start, end),
        "total_orders": total,
        "completed_orders": completed,
        "cancelled_orders": int((df["status"] == "cancelled").sum()),
        "total_revenue": round(revenue, 2),
        "average_order_value": round(revenue / completed, 2) if completed else 0.0,
        "completion_rate": _percent(completed, total),
        "package_usage_rate": _percent(int(df["user_package_id"].notna().sum()), total),
        "voucher_usage_rate": _percent(int(df["user_voucher_id"].notna().sum()), total),
        "orders_by_status": {
            status: int(count) for status, count in df["status"].value_counts().items()
        },
        "sales_by_day": get_revenue_by_day(start, end),
    }


def _customers_created_between(start, end):
    return db.session.scalar(
        select(func.count(User.id)).where(
            User.role == "customer",
            User.created_at >= start,
            User.created_at <= end,
        )
    ) or 0


def get_user_growth_report(start, end):
    rows = db.session.execute(
        select(User.id, User.referred_by_id, User.created_at).where(
            User.role == "customer", User.created_at <= end
        )
    ).all()
    df = pd.DataFrame(rows, columns=["id", "referred_by_id", "created_at"])
    df["created_at"] = pd.to_datetime(df["created_at"])
    new = df[df["created_at"] >= start]
    existing = len(df) - len(new)

    keys = day_keys(start, end)
    per_day = pd.Series(0, index=keys)
    if not new.empty:
        per_day = per_day.add(
            new["created_at"].dt.strftime("%Y-%m-%d").value_counts(), fill_value=0
        ).reindex(keys, fill_value=0)
    cumulative = per_day.cumsum() + existing

    active = db.session.scalar(
        select(func.count(func.distinct(Order.user_id))).where(
            Order.created_at >= start,
            Order.created_at <= end,
            Order.status != "cancelled",
        )
    ) or 0

    span = timedelta(days=len(keys))
    previous = _customers_created_between(start - span, start - timedelta(microseconds=1))
    if previous:
        growth_rate = round((len(new) - previous) / previous * 100, 2)
    else:
        growth_rate = 100.0 if len(new) else 0.0

    referred = int(new["referred_by_id"].notna().sum())
    return {
        "period": _period(start, end),
        "total_users": len(df),
        "new_users": len(new),
        "active_users": active,
        "previous_period_new_users": previous,
        "growth_rate": growth_rate,
        "users_by_source": {"direct": len(new) - referred, "referral": referred},
        "daily_growth": [
            {"date": key, "new_users": int(per_day[key]), "total_users": int(cumulative[key])}
            for key in keys
        ],
    }


def _trend_bucket(status):
    if status in COMPLETED_STATUSES:
        return "completed"
    if status == "cancelled":
        return "cancelled"
    return "pending"


def get_order_trends_report(start, end):
    """Order volume by day, hour, weekday and month, plus turnaround time."""
    df = _orders_frame(start, end)
    keys = day_keys(start, end)
    months = [str(p) for p in pd.period_range(start, end, freq="M")]

    if df.empty:
        by_day = pd.DataFrame(0, index=keys, columns=["pending", "completed", "cancelled"])
        by_hour = pd.Series(0, index=range(24))
        by_weekday = pd.Series(0, index=range(7))
        by_month = pd.Series(0, index=months)
        average_hours = 0.0
    else:
        df["day"] = df["created_at"].dt.strftime("%Y-%m-%d")
        df["bucket"] = df["status"].map(_trend_bucket)
        by_day = pd.crosstab(df["day"], df["bucket"]).reindex(
            index=keys, columns=["pending", "completed", "cancelled"], fill_value=0
        )
        by_hour = df["created_at"].dt.hour.value_counts().reindex(range(24), fill_value=0)
        by_weekday = df["created_at"].dt.dayofweek.value_counts().reindex(range(7), fill_value=0)
        by_month = (
            df["created_at"].dt.to_period("M").astype(str).value_counts().reindex(months, fill_value=0)
        )
        finished = df[df["status"].isin(COMPLETED_STATUSES) & df["completed_at"].notna()]
        if finished.empty:
            average_hours = 0.0
        else:
            turnaround = (finished["completed_at"] - finished["created_at"]).dt.total_seconds()
            average_hours = round(float(turnaround.mean()) / 3600, 2)

    return {
        "period": _period(start, end),
        "orders_by_day": [
            {
                "date": key,
                "pending": int(by_day.loc[key, "pending"]),
                "completed": int(by_day.loc[key, "completed"]),
                "cancelled": int(by_day.loc[key, "cancelled"]),
                "total": int(by_day.loc[key].sum()),
            }
            for key in keys
        ],
        "orders_by_hour": [{"hour": h, "orders": int(by_hour[h])} for h in range(24)],
        "orders_by_day_of_week": [
            {"day": WEEKDAYS[d], "orders": int(by_weekday[d])} for d in range(7)
        ],
        "orders_by_month": [{"month": m, "orders": int(by_month[m])} for m in months],
        "average_completion_hours": average_hours,
    }
