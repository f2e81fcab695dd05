"""HTTP client for the resell backend.

Every backend call goes through ``ApiClient.request``, which attaches the
bearer token held by the session context (when there is one) and turns
failed responses into ``ApiError`` subclasses. Nothing is retried.
"""
import logging
from decimal import Decimal
from urllib.parse import urljoin

import requests

from .errors import ApiError, NotFoundError, TransportError, error_for_response
from .models import Cart, Item, Role, User

logger = logging.getLogger(__name__)


def _jsonable(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _body(response):
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class ApiClient:

    def __init__(self, base_url, session, http=None, timeout=None):
        self.base_url = base_url.rstrip('/') + '/'
        self.session = session
        self.http = http if http is not None else requests.Session()
        self.timeout = timeout

    def _auth_headers(self):
        token = self.session.token
        if not token:
            return {}
        return {'Authorization': f'Bearer {token}'}

    def request(self, method, path, data=None, files=None):
        """Send one request and return the parsed body.

        Raises ``TransportError`` when no response came back and the
        matching ``ApiError`` subclass for any non-2xx status.
        """
        url = urljoin(self.base_url, path.lstrip('/'))
        headers = {'Accept': 'application/json'}
        headers.update(self._auth_headers())
        logger.debug('%s %s authenticated=%s', method, path, 'Authorization' in headers)
        try:
            response = self.http.request(
                method,
                url,
                headers=headers,
                json=_jsonable(data) if data is not None else None,
                files=files,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning('%s %s failed: %s', method, path, e)
            raise TransportError() from e

        if not 200 <= response.status_code < 300:
            error = error_for_response(response)
            logger.warning('%s %s returned %s: %s', method, path, response.status_code, error)
            raise error
        return _body(response)

    def get(self, path):
        return self.request('GET', path)

    def post(self, path, data=None, files=None):
        return self.request('POST', path, data=data, files=files)

    def put(self, path, data=None):
        return self.request('PUT', path, data=data)

    def delete(self, path):
        return self.request('DELETE', path)

    # auth

    def register(self, fields):
        payload = {k: fields.get(k, '') for k in ('firstname', 'lastname', 'email', 'password')}
        return self.post('/auth/register', payload)

    def login(self, credentials):
        body = self.post('/auth/login', {
            'email': credentials.get('email', ''),
            'password': credentials.get('password', ''),
        }) or {}
        if not isinstance(body, dict) or not body.get('token'):
            raise ApiError('Login failed: the server sent no token.')
        username = body.get('username') or body.get('email') or credentials.get('email')
        self.session.set(body['token'], username, body.get('role'))
        return {
            'token': body['token'],
            'username': username,
            'role': self.session.role,
        }

    def logout(self):
        # local only; the backend has no revocation endpoint
        self.session.clear()

    # items

    def list_items(self):
        return [Item.from_dict(d) for d in self.get('/items') or []]

    def get_item(self, item_id):
        item = Item.from_dict(self.get(f'/items/{item_id}'))
        if item is None:
            raise NotFoundError('Item not found.', status_code=404)
        return item

    def my_items(self):
        return [Item.from_dict(d) for d in self.get('/items/my') or []]

    @staticmethod
    def _item_payload(fields):
        return {
            'title': fields.get('title'),
            'description': fields.get('description'),
            'price': fields.get('price'),
            'imageUrl': fields.get('imageUrl'),
        }

    def create_item(self, fields):
        return Item.from_dict(self.post('/items', self._item_payload(fields)))

    def update_item(self, item_id, fields):
        return Item.from_dict(self.put(f'/items/{item_id}', self._item_payload(fields)))

    def delete_item(self, item_id):
        self.delete(f'/items/{item_id}')

    def upload_image(self, file, filename='upload', content_type=None):
        """Upload an image as multipart field ``file``; return the URL as sent."""
        part = (filename, file, content_type) if content_type else (filename, file)
        body = self.post('/items/upload', files={'file': part})
        if isinstance(body, dict):
            return body.get('url')
        return body

    # cart

    def get_cart(self):
        return Cart.from_dict(self.get('/cart'))

    def add_to_cart(self, item_id):
        return self.post('/cart/add', {'itemId': item_id})

    def remove_from_cart(self, cart_item_id):
        return self.delete(f'/cart/remove/{cart_item_id}')

    def checkout(self):
        return self.post('/cart/checkout')

    # admin

    def admin_list_items(self):
        return [Item.from_dict(d) for d in self.get('/admin/items') or []]

    def admin_delete_item(self, item_id):
        return self.delete(f'/admin/items/{item_id}')

    def admin_list_users(self):
        return [User.from_dict(d) for d in self.get('/admin/users') or []]

    def admin_toggle_role(self, user_id):
        body = self.post(f'/admin/users/{user_id}/toggle-admin') or {}
        return Role.from_wire(body.get('role'))
