from .models import Role

FIELDS = ('token', 'username', 'role')


class SessionContext:
    """Holds the login state (token, username, role) in a key/value store.

    The store is any mutable mapping; the web app hands in the Flask session
    of the current request, so the values live in the browser's signed cookie.
    Writes are visible to the next read straight away. The token is opaque.
    """

    def __init__(self, store=None):
        self._store = store if store is not None else {}

    def set(self, token, username, role):
        self._store['token'] = token
        self._store['username'] = username
        self._store['role'] = Role.from_wire(role).value

    def get(self, field):
        if field not in FIELDS:
            raise KeyError(field)
        return self._store.get(field)

    def clear(self):
        for name in FIELDS:
            self._store.pop(name, None)

    @property
    def token(self):
        return self.get('token')

    @property
    def username(self):
        return self.get('username')

    @property
    def role(self):
        value = self.get('role')
        return Role.from_wire(value) if value else None

    @property
    def is_authenticated(self):
        return bool(self.token)

    @property
    def is_admin(self):
        return self.is_authenticated and self.role is Role.ADMIN
