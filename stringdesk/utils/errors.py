from flask import jsonify

ERROR_STATUS = {
    "BAD_REQUEST": 400,
    "UNAUTHORIZED": 401,
    "FORBIDDEN": 403,
    "FEATURE_DISABLED": 403,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "UNPROCESSABLE_ENTITY": 422,
    "INTERNAL_ERROR": 500,
}


class ApiError(Exception):
    """Error raised by services and turned into a JSON error envelope."""

    def __init__(self, code, message, status=None, details=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status or ERROR_STATUS.get(code, 400)
        self.details = details

    def to_response(self):
        return error_response(self.code, self.message, self.status, self.details)


def bad_request(message, details=None):
    return ApiError("BAD_REQUEST", message, details=details)


def unauthorized(message="Authentication required"):
    return ApiError("UNAUTHORIZED", message)


def forbidden(message="Admin access required"):
    return ApiError("FORBIDDEN", message)


def not_found(message):
    return ApiError("NOT_FOUND", message)


def conflict(message, details=None):
    return ApiError("CONFLICT", message, details=details)


def unprocessable(message, details=None):
    return ApiError("UNPROCESSABLE_ENTITY", message, details=details)


def success_response(data=None, message=None, status=200):
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def error_response(code, message, status=None, details=None):
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return jsonify({"success": False, "error": error}), status or ERROR_STATUS.get(
        code, 500
    )


def internal_error(message="Internal server error"):
    return error_response("INTERNAL_ERROR", message, 500)
