"""Validation utilities for request payloads."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from session_engine.utils.errors import ValidationError

class Validator:
    """Validation helper class."""

    @staticmethod
    def validate_required_fields(data: Dict, required_fields: List[str]) -> Dict[str, Any]:
        """Validate required fields in data."""
        errors = []

        for field in required_fields:
            if field not in data or data[field] is None or data[field] == '':
                errors.append(f"{field} is required")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }

    @staticmethod
    def require(data: Optional[Dict], required_fields: List[str]) -> Dict:
        """Raise ValidationError unless every required field is present."""
        if not isinstance(data, dict):
            raise ValidationError("Request body must be JSON")

        validation = Validator.validate_required_fields(data, required_fields)
        if not validation['is_valid']:
            raise ValidationError(', '.join(validation['errors']))

        return data

    @staticmethod
    def parse_datetime(value: Any, field: str) -> Optional[datetime]:
        """Parse an ISO-8601 string into a naive UTC datetime."""
        if value is None or isinstance(value, datetime):
            return value

        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f"Invalid datetime format for {field}. Use ISO format")

        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    @staticmethod
    def validate_coordinates(latitude: Any, longitude: Any) -> Dict[str, Any]:
        """Validate a latitude/longitude pair."""
        errors = []

        try:
            lat = float(latitude)
            lng = float(longitude)
        except (TypeError, ValueError):
            return {"is_valid": False, "errors": ["Coordinates must be numbers"]}

        if not -90 <= lat <= 90:
            errors.append("Latitude must be between -90 and 90")
        if not -180 <= lng <= 180:
            errors.append("Longitude must be between -180 and 180")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }

    @staticmethod
    def validate_marks(marks: Any, maximum: float) -> Dict[str, Any]:
        """Validate a mark against [0, maximum]."""
        errors = []

        try:
            value = float(marks)
        except (TypeError, ValueError):
            return {"is_valid": False, "errors": ["Marks must be a number"]}

        if value < 0 or value > maximum:
            errors.append(f"Marks must be between 0 and {maximum:g}")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }
