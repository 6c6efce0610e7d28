from .auth import Account, SessionToken, ROLES, ROLE_ADMIN, ROLE_SELLER
from .catalog import Product, Category, Provider
from .sales import Sale, SaleLine
from .settings import AppConfig
from .security import SecurityEvent, RecoveryCode

__all__ = [
    'Account', 'SessionToken', 'ROLES', 'ROLE_ADMIN', 'ROLE_SELLER',
    'Product', 'Category', 'Provider',
    'Sale', 'SaleLine',
    'AppConfig',
    'SecurityEvent', 'RecoveryCode',
]
