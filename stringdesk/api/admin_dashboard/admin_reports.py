from datetime import datetime
from io import BytesIO

import pandas as pd
from flask import Blueprint, current_app, request, send_file

from ...services.analytics_service import (
    build_report_frames,
    get_order_trends_report,
    get_profit_report,
    get_sales_report,
    get_user_growth_report,
    parse_date_range,
)
from ...utils.auth import require_admin
from ...utils.errors import ApiError, error_response, internal_error, success_response

admin_reports_bp = Blueprint("admin_reports", __name__, url_prefix="/api/admin/reports")


@admin_reports_bp.route("/export", methods=["POST"])
@require_admin
def export_report():
    """
    Download an Excel workbook of the selected sections
    ---
    tags:
      - Admin Reports
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            orders:
              type: boolean
            revenue:
              type: boolean
            payments:
              type: boolean
            inventory:
              type: boolean
            startDate:
              type: string
              format: date
            endDate:
              type: string
              format: date
            days:
              type: integer
    produces:
      - application/vnd.openxmlformats-officedocument.spreadsheetml.sheet
    responses:
      200:
        description: xlsx workbook, one sheet per section
      400:
        description: No section selected or invalid range
    """
    try:
        selected = request.get_json(silent=True) or {}
        start, end = parse_date_range(selected)
        frames = build_report_frames(selected, start, end)
        if not frames:
            return error_response("BAD_REQUEST", "Select at least one report section")

        output = BytesIO()
        with pd.ExcelWriter(output, engine="xlsxwriter") as writer:
            for sheet_name, frame in frames.items():
                frame.to_excel(writer, sheet_name=sheet_name, index=False)

        output.seek(0)
        filename = f"StringDesk_Report_{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"

        return send_file(
            output,
            as_attachment=True,
            download_name=filename,
            mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to export report: {e}")
        return internal_error("Failed to generate report")


def _range_report(builder, label):
    try:
        start, end = parse_date_range(request.args)
        return success_response(builder(start, end))
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to build {label} report: {e}")
        return internal_error(f"Failed to generate {label} report")


@admin_reports_bp.route("/profit", methods=["GET"])
@require_admin
def profit_report():
    """
    Profit breakdown for a date range
    ---
    tags:
      - Admin Reports
    security:
      - Bearer: []
    parameters:
      - in: query
        name: startDate
        type: string
        format: date
      - in: query
        name: endDate
        type: string
        format: date
      - in: query
        name: days
        type: integer
        description: Trailing window when no dates are given (default 30)
    responses:
      200:
        description: Order profit grouped by string plus package sales
      400:
        description: Invalid range
    """
    return _range_report(get_profit_report, "profit")


@admin_reports_bp.route("/sales", methods=["GET"])
@require_admin
def sales_report():
    """
    Sales summary for a date range
    ---
    tags:
      - Admin Reports
    security:
      - Bearer: []
    parameters:
      - in: query
        name: startDate
        type: string
        format: date
      - in: query
        name: endDate
        type: string
        format: date
      - in: query
        name: days
        type: integer
    responses:
      200:
        description: Totals, completion and usage rates, status counts and daily sales
      400:
        description: Invalid range
    """
    return _range_report(get_sales_report, "sales")


@admin_reports_bp.route("/user-growth", methods=["GET"])
@require_admin
def user_growth_report():
    """
    Customer sign-ups for a date range
    ---
    tags:
      - Admin Reports
    security:
      - Bearer: []
    parameters:
      - in: query
        name: days
        type: integer
    responses:
      200:
        description: New and active customers, daily cumulative growth and sign-up source
      400:
        description: Invalid range
    """
    return _range_report(get_user_growth_report, "user growth")


@admin_reports_bp.route("/order-trends", methods=["GET"])
@require_admin
def order_trends_report():
    """
    Order volume by day, hour, weekday and month
    ---
    tags:
      - Admin Reports
    security:
      - Bearer: []
    parameters:
      - in: query
        name: days
        type: integer
    responses:
      200:
        description: Order counts per bucket and average turnaround in hours
      400:
        description: Invalid range
    """
    return _range_report(get_order_trends_report, "order trends")
