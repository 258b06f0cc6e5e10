from flask import Blueprint, current_app, g, request

from ...extensions import db
from ...services import review_service
from ...utils.auth import require_user
from ...utils.errors import ApiError, internal_error, success_response
from ...utils.s3_utils import store_image
from ...utils.serializers import serialize_order, serialize_review

reviews_bp = Blueprint("reviews", __name__, url_prefix="/api/reviews")


@reviews_bp.route("", methods=["POST"])
@require_user
def post_review():
    """
    Review a completed order
    ---
    tags:
      - Reviews
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [order_id, rating, comment]
          properties:
            order_id:
              type: integer
            rating:
              type: integer
              minimum: 1
              maximum: 5
            comment:
              type: string
              minLength: 10
            photos:
              type: array
              items:
                type: string
    responses:
      201:
        description: Review posted and reward points granted
      404:
        description: Order not found
      409:
        description: Order already reviewed
      422:
        description: Order not completed, bad rating or comment too short
    """
    try:
        data = request.get_json(silent=True) or {}
        review, reward = review_service.submit_review(g.current_user, data)
        return success_response(
            {"review": serialize_review(review), "points_awarded": reward},
            "Review posted",
            201,
        )
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to post review: {e}")
        return internal_error("Failed to post review")


@reviews_bp.route("/photo", methods=["POST"])
@require_user
def upload_review_photo():
    try:
        url = store_image(request.files.get("file"), "review-photos")
        return success_response({"url": url}, "Photo uploaded", 201)
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to upload review image: {e}")
        return internal_error("Failed to upload photo")


@reviews_bp.route("/pending", methods=["GET"])
@require_user
def pending_reviews():
    try:
        orders = review_service.list_pending_review_orders(g.current_user)
        return success_response([serialize_order(o) for o in orders])
    except Exception as e:
        current_app.logger.error(f"Failed to list orders awaiting review: {e}")
        return internal_error()


@reviews_bp.route("/mine", methods=["GET"])
@require_user
def my_reviews():
    try:
        reviews = review_service.list_user_reviews(g.current_user)
        return success_response([serialize_review(r) for r in reviews])
    except Exception as e:
        current_app.logger.error(f"Failed to list user reviews: {e}")
        return internal_error()


@reviews_bp.route("", methods=["GET"])
def public_reviews():
    try:
        reviews = review_service.list_public_reviews(
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 20, type=int),
            min_rating=request.args.get("min_rating", type=int),
        )
        return success_response([serialize_review(r) for r in reviews])
    except Exception as e:
        current_app.logger.error(f"Failed to list reviews: {e}")
        return internal_error()


@reviews_bp.route("/featured", methods=["GET"])
def featured_reviews():
    try:
        reviews = review_service.list_featured_reviews(
            request.args.get("limit", 6, type=int)
        )
        return success_response([serialize_review(r) for r in reviews])
    except Exception as e:
        current_app.logger.error(f"Failed to list featured reviews: {e}")
        return internal_error()
