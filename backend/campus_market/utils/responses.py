from flask import jsonify


def success_response(data=None, message="OK", status_code=200):
    # "data" is always present; null is a meaningful answer for polling reads.
    payload = {"success": True, "message": message, "data": data}
    response = jsonify(payload)
    response.status_code = status_code
    return response
