"""Helper functions for the application."""
from flask import jsonify
from typing import Any, Dict

def handle_error(error, status_code: int):
    """Handle application errors with consistent format."""
    return jsonify({
        'error': True,
        'message': str(error),
        'status_code': status_code
    }), status_code

def engine_error_response(error):
    """Render an EngineError with its stable kind."""
    payload = {
        'error': True,
        'status_code': error.status_code
    }
    payload.update(error.to_dict())
    return jsonify(payload), error.status_code

def success_response(data: Any = None, message: str = "Success", meta: Dict = None):
    """Return consistent success response."""
    response = {
        'error': False,
        'message': message
    }

    if data is not None:
        response['data'] = data

    if meta is not None:
        response['meta'] = meta

    return jsonify(response)

def error_response(message: str, status_code: int = 400):
    """Return consistent error response."""
    return jsonify({
        'error': True,
        'message': message,
        'status_code': status_code
    }), status_code

def isoformat(value):
    """ISO string for datetimes, passthrough for None."""
    return value.isoformat() if value is not None else None
