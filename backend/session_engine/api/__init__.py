"""REST blueprints and shared request parsing."""
from flask import current_app, request
from session_engine.services.record_store import DeviceInfo
from session_engine.utils.errors import ValidationError
from session_engine.utils.validators import Validator

def client_ip() -> str:
    """Peer address; forwarded headers are honoured only through ProxyFix."""
    return request.remote_addr

def device_from_request(data: dict = None) -> DeviceInfo:
    """Device fingerprint from the request plus optional coordinates in the body."""
    data = data or {}
    location = data.get('location') or {}
    latitude = data.get('latitude', location.get('latitude'))
    longitude = data.get('longitude', location.get('longitude'))

    if latitude is not None or longitude is not None:
        coordinates = Validator.validate_coordinates(latitude, longitude)
        if not coordinates['is_valid']:
            raise ValidationError(', '.join(coordinates['errors']))
        latitude, longitude = float(latitude), float(longitude)

    return DeviceInfo(
        ip=client_ip(),
        user_agent=request.headers.get('User-Agent'),
        latitude=latitude,
        longitude=longitude
    )

def pagination_meta(pagination) -> dict:
    return {
        'page': pagination.page,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'pages': pagination.pages,
        'has_next': pagination.has_next,
        'has_prev': pagination.has_prev
    }

def submission_limit() -> str:
    return current_app.config.get('SUBMISSION_RATE_LIMIT', '30 per minute')
