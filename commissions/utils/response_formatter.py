from flask import jsonify


def success_response(data=None, status=200, message=None):
    payload = {"success": True, "data": data}
    if message:
        payload["message"] = message
    return jsonify(payload), status


def error_response(code, message, details=None, status=400):
    return jsonify({
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
    }), status
