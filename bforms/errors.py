class BFormsError(Exception):
    """Base error for every failure the API reports to its caller."""
    status_code = 500
    default_message = 'Server error'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class Unauthenticated(BFormsError):
    status_code = 401
    default_message = 'Authentication required'


class Forbidden(BFormsError):
    status_code = 403
    default_message = 'Access denied'


class NotFound(BFormsError):
    status_code = 404
    default_message = 'Not found'


class ValidationError(BFormsError):
    status_code = 400
    default_message = 'Invalid data'


class Conflict(BFormsError):
    status_code = 409
    default_message = 'Conflict'


class UpstreamUnavailable(BFormsError):
    status_code = 503
    default_message = 'Service unavailable'
