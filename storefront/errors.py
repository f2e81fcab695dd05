"""Failures raised by the backend client.

Every failed call surfaces as an ``ApiError``. The subclass tells the view
which class of failure happened; ``str(error)`` is always a message fit to
show the user.
"""


class ApiError(Exception):
    default_message = 'Request failed. Please try again.'

    def __init__(self, message=None, status_code=None, payload=None):
        self.message = message or self.default_message
        self.status_code = status_code
        self.payload = payload
        super().__init__(self.message)


class TransportError(ApiError):
    default_message = 'Could not reach the server. Please try again.'


class AuthenticationError(ApiError):
    default_message = 'Please login again.'


class NotFoundError(ApiError):
    default_message = 'Not found.'


class RequestRejected(ApiError):
    default_message = 'The request was rejected.'


class ServerError(ApiError):
    default_message = 'Something went wrong on the server.'


def _payload(response):
    try:
        return response.json()
    except ValueError:
        return response.text or None


def message_from_payload(payload):
    if isinstance(payload, str):
        return payload.strip() or None
    if isinstance(payload, dict):
        for key in ('message', 'error', 'detail'):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def error_for_response(response):
    status = response.status_code
    if status in (401, 403):
        cls = AuthenticationError
    elif status == 404:
        cls = NotFoundError
    elif 400 <= status < 500:
        cls = RequestRejected
    else:
        cls = ServerError
    payload = _payload(response)
    return cls(message_from_payload(payload), status_code=status, payload=payload)
