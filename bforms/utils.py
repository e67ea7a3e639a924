from flask import jsonify, current_app, request
from sqlalchemy.exc import OperationalError, IntegrityError
from bforms.errors import UpstreamUnavailable, ValidationError, Conflict
from bforms.models import db
import functools
import time
import uuid
import requests

def api_response(success=True, data=None, error=None, status=200):
    """Standardized JSON envelope for all API routes."""
    response = {
        'success': success,
        'data': data,
        'error': error
    }
    return jsonify(response), status

def json_body():
    """The request's JSON object, or {} when there is no body."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be an object')
    return data

def parse_id(value, kind='id'):
    """Rejects ids that are not UUID strings before they reach the database."""
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"Invalid {kind}")

def commit():
    """
    Commits the current unit of work.
    Any failure rolls the session back so no partial write survives.
    """
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("Conflicting write")
    except OperationalError as e:
        db.session.rollback()
        current_app.logger.error(f"Database unavailable: {e}")
        raise UpstreamUnavailable("Database unavailable")

def retry_request(retries=3, backoff_factor=0.3, status_codes=(500, 502, 503, 504)):
    """
    Decorator for retrying outbound HTTP calls with exponential backoff.
    Only server errors, timeouts and connection errors are retried.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(retries + 1):
                try:
                    return func(*args, **kwargs)
                except requests.exceptions.RequestException as e:
                    response = getattr(e, 'response', None)
                    if response is not None:
                        is_retryable = response.status_code in status_codes
                    else:
                        is_retryable = isinstance(e, (requests.exceptions.Timeout, requests.exceptions.ConnectionError))

                    if not is_retryable or attempt == retries:
                        raise
                    time.sleep(backoff_factor * (2 ** attempt))
        return wrapper
    return decorator
