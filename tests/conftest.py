import json as jsonlib
import threading
from urllib.parse import urlsplit

import pytest
import requests

from storefront import create_app
from storefront.api import ApiClient
from storefront.session import SessionContext

BASE_URL = 'http://backend.test'


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        if body is None:
            self.text = ''
        elif isinstance(body, str):
            self.text = body
        else:
            self.text = jsonlib.dumps(body)
        self.content = self.text.encode()
        self._json = not isinstance(body, str)

    def json(self):
        if not self._json or not self.text:
            raise ValueError('not json')
        return jsonlib.loads(self.text)


class FakeBackend:
    """In-memory stand-in for the resell REST backend.

    Records every request and serves the same routes with the same
    status codes and bodies as the real service.
    """

    def __init__(self):
        self.calls = []
        self.fail_transport = False
        # (method, path, Authorization header) -> Event the call waits on
        self.stalls = {}
        self.waiting = []
        self._lock = threading.Lock()
        self.users = {
            'a@b.com': {'id': 1, 'fullname': 'Ann Buyer', 'password': 'x',
                        'token': 't1', 'username': 'a', 'role': 'ROLE_USER'},
            'seller@b.com': {'id': 2, 'fullname': 'Sam Seller', 'password': 'pw',
                             'token': 't2', 'username': 'seller', 'role': 'ROLE_USER'},
            'admin@b.com': {'id': 3, 'fullname': 'Ada Admin', 'password': 'admin',
                            'token': 't-admin', 'username': 'admin', 'role': 'ROLE_ADMIN'},
        }
        self.items = {
            1: {'id': 1, 'title': 'Gaming Laptop', 'description': '16GB RAM',
                'price': 999.99, 'imageUrl': 'https://cdn/laptop.jpg',
                'purchased': False, 'owner_email': 'seller@b.com'},
            2: {'id': 2, 'title': 'Desk Lamp', 'description': '',
                'price': 15.5, 'imageUrl': None,
                'purchased': False, 'owner_email': 'seller@b.com'},
        }
        self.carts = {}
        self._next_item_id = 3
        self._next_cart_item_id = 100
        self.upload_url = 'https://cdn/x.jpg'

    # helpers for assertions

    def paths(self, method=None):
        return [c['path'] for c in self.calls if method is None or c['method'] == method]

    def last(self, method, path):
        for call in reversed(self.calls):
            if call['method'] == method and call['path'] == path:
                return call
        raise AssertionError(f'no {method} {path} request')

    # requests.Session.request seam

    def request(self, method, url, headers=None, json=None, files=None, timeout=None):
        path = urlsplit(url).path
        stall = self.stalls.get((method, path, (headers or {}).get('Authorization')))
        if stall is not None:
            self.waiting.append(path)
            stall.wait(10)
        with self._lock:
            self.calls.append({'method': method, 'path': path, 'headers': dict(headers or {}),
                               'json': json, 'files': files, 'timeout': timeout})
            if self.fail_transport:
                raise requests.ConnectionError('connection refused')
            return self._route(method, path, headers or {}, json, files)

    def _user_for(self, headers):
        auth = headers.get('Authorization', '')
        if not auth.startswith('Bearer '):
            return None
        token = auth[len('Bearer '):]
        for email, user in self.users.items():
            if user['token'] == token:
                return dict(user, email=email)
        return None

    def _item_json(self, item):
        data = {k: v for k, v in item.items() if k != 'owner_email'}
        owner = self.users.get(item.get('owner_email'))
        if owner:
            data['owner'] = {'id': owner['id'], 'fullname': owner['fullname'],
                             'email': item['owner_email'], 'role': owner['role']}
        return data

    def _route(self, method, path, headers, body, files):
        parts = [p for p in path.split('/') if p]
        user = self._user_for(headers)

        if parts[:1] == ['auth']:
            return self._auth(parts[1], body)

        if parts[0] == 'items' and method == 'GET' and parts[1:] != ['my']:
            return self._items(method, parts[1:], body, user)
        if parts == ['items', 'upload'] and method == 'POST':
            return FakeResponse(200, {'url': self.upload_url})

        if user is None:
            return FakeResponse(401, {'error': 'Unauthorized'})

        if parts[0] == 'items':
            return self._items(method, parts[1:], body, user)
        if parts[0] == 'cart':
            return self._cart(method, parts[1:], body, user)
        if parts[0] == 'admin':
            if user['role'] != 'ROLE_ADMIN':
                return FakeResponse(403, 'Forbidden')
            return self._admin(method, parts[1:])
        return FakeResponse(404, {'message': 'No route'})

    def _auth(self, action, body):
        if action == 'register':
            if body['email'] in self.users:
                return FakeResponse(400, 'Error: Email is already in use!')
            self.users[body['email']] = {
                'id': len(self.users) + 1,
                'fullname': f"{body['firstname']} {body['lastname']}",
                'password': body['password'], 'token': 'tok-' + body['email'],
                'username': body['firstname'], 'role': 'ROLE_USER'}
            return FakeResponse(200, 'User registered successfully!')
        user = self.users.get(body['email'])
        if not user or user['password'] != body['password']:
            return FakeResponse(401, 'Error: Invalid email or password')
        return FakeResponse(200, {'token': user['token'], 'username': user['username'],
                                  'role': user['role']})

    def _items(self, method, rest, body, user):
        if not rest and method == 'GET':
            return FakeResponse(200, [self._item_json(i) for i in self.items.values()])
        if rest == ['my']:
            mine = [i for i in self.items.values() if i['owner_email'] == user['email']]
            return FakeResponse(200, [self._item_json(i) for i in mine])
        if not rest and method == 'POST':
            item = dict(body, id=self._next_item_id, purchased=False, owner_email=user['email'])
            self.items[item['id']] = item
            self._next_item_id += 1
            return FakeResponse(200, self._item_json(item))
        item_id = int(rest[0])
        if method == 'GET':
            item = self.items.get(item_id)
            # the backend answers 200 with an empty body for unknown ids
            return FakeResponse(200, self._item_json(item) if item else None)
        if method == 'PUT':
            item = dict(self.items[item_id], **body)
            self.items[item_id] = item
            return FakeResponse(200, self._item_json(item))
        if method == 'DELETE':
            self.items.pop(item_id, None)
            return FakeResponse(200)
        return FakeResponse(405, 'Method not allowed')

    def _cart(self, method, rest, body, user):
        cart = self.carts.setdefault(user['email'], [])
        if not rest and method == 'GET':
            entries = [{'id': ci['id'], 'item': self._item_json(self.items[ci['item_id']])
                        if ci['item_id'] in self.items else None} for ci in cart]
            return FakeResponse(200, {'id': user['id'], 'items': entries})
        if rest == ['add']:
            if body['itemId'] not in self.items:
                return FakeResponse(500, {'message': 'Item not found'})
            cart.append({'id': self._next_cart_item_id, 'item_id': body['itemId']})
            self._next_cart_item_id += 1
            return FakeResponse(200, {'message': 'Item added to cart'})
        if rest[:1] == ['remove']:
            cart_item_id = int(rest[1])
            if not any(ci['id'] == cart_item_id for ci in cart):
                return FakeResponse(403, 'Unauthorized')
            cart[:] = [ci for ci in cart if ci['id'] != cart_item_id]
            return FakeResponse(200, {'message': 'Item removed from cart'})
        if rest == ['checkout']:
            if not cart:
                return FakeResponse(400, 'Cart is empty')
            cart.clear()
            return FakeResponse(200, {'message': 'Checkout successful!'})
        return FakeResponse(404, {'message': 'No route'})

    def _admin(self, method, rest):
        if rest == ['items']:
            return FakeResponse(200, [self._item_json(i) for i in self.items.values()])
        if rest[0] == 'items' and method == 'DELETE':
            self.items.pop(int(rest[1]), None)
            return FakeResponse(200, {'message': 'Item deleted by admin'})
        if rest == ['users']:
            return FakeResponse(200, [{'id': u['id'], 'fullname': u['fullname'], 'email': email,
                                       'role': u['role']} for email, u in self.users.items()])
        if rest[0] == 'users' and rest[2:] == ['toggle-admin']:
            user_id = int(rest[1])
            for u in self.users.values():
                if u['id'] == user_id:
                    u['role'] = 'ROLE_USER' if u['role'] == 'ROLE_ADMIN' else 'ROLE_ADMIN'
                    return FakeResponse(200, {'role': u['role']})
            return FakeResponse(500, {'message': 'User not found'})
        return FakeResponse(404, {'message': 'No route'})


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def store_session():
    return SessionContext()


@pytest.fixture
def api(backend, store_session):
    return ApiClient(BASE_URL, store_session, http=backend)


@pytest.fixture
def app(backend):
    app = create_app({'TESTING': True, 'SECRET_KEY': 'test', 'API_BASE_URL': BASE_URL})
    app.extensions['storefront.http'] = backend
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login_as(client):
    def _login(email='a@b.com', password='x'):
        return client.post('/login', data={'email': email, 'password': password})
    return _login
