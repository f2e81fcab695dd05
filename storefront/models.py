# storefront/models.py
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional


class Role(Enum):
    USER = 'USER'
    ADMIN = 'ADMIN'

    @classmethod
    def from_wire(cls, value):
        # backend sends ROLE_ADMIN / ROLE_USER
        if isinstance(value, Role):
            return value
        name = str(value or '').upper()
        if name.startswith('ROLE_'):
            name = name[len('ROLE_'):]
        return cls.ADMIN if name == 'ADMIN' else cls.USER


def _price(value):
    if value is None or value == '':
        return Decimal('0')
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal('0')


@dataclass
class User:
    id: Optional[int]
    firstname: str = ''
    lastname: str = ''
    fullname: str = ''
    email: str = ''
    role: Role = Role.USER

    @property
    def display_name(self):
        if self.fullname:
            return self.fullname
        return ' '.join(p for p in (self.firstname, self.lastname) if p) or self.email

    @property
    def is_admin(self):
        return self.role is Role.ADMIN

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            id=data.get('id'),
            firstname=data.get('firstname') or '',
            lastname=data.get('lastname') or '',
            fullname=data.get('fullname') or '',
            email=data.get('email') or '',
            role=Role.from_wire(data.get('role')),
        )


@dataclass
class Item:
    id: Optional[int]
    title: str = ''
    description: str = ''
    price: Decimal = Decimal('0')
    image_url: Optional[str] = None
    owner: Optional[User] = None
    purchased: bool = False

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            id=data.get('id'),
            title=data.get('title') or '',
            description=data.get('description') or '',
            price=_price(data.get('price')),
            image_url=data.get('imageUrl') or None,
            owner=User.from_dict(data.get('owner')),
            purchased=bool(data.get('purchased')),
        )


@dataclass
class CartItem:
    id: Optional[int]
    item: Optional[Item] = None

    @classmethod
    def from_dict(cls, data):
        return cls(id=data.get('id'), item=Item.from_dict(data.get('item')))


@dataclass
class Cart:
    id: Optional[int] = None
    items: List[CartItem] = field(default_factory=list)

    @property
    def subtotal(self):
        return sum((ci.item.price for ci in self.items if ci.item), Decimal('0'))

    def __len__(self):
        return len(self.items)

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            id=data.get('id'),
            items=[CartItem.from_dict(ci) for ci in data.get('items') or []],
        )
