from .network import Franchisor, Franchisee, Merchant, MerchantStatus
from .vouchers import (
    Voucher, Transaction, Commission,
    VoucherStatus, TransactionKind, TransactionStatus, CommissionStatus,
)
from .billing import Charge, ChargeStatus, ChargeType
from .auth import User, SessionToken, Role
from .audit import AuditEvent, SecurityEvent

__all__ = [
    'Franchisor', 'Franchisee', 'Merchant', 'MerchantStatus',
    'Voucher', 'Transaction', 'Commission',
    'VoucherStatus', 'TransactionKind', 'TransactionStatus', 'CommissionStatus',
    'Charge', 'ChargeStatus', 'ChargeType',
    'User', 'SessionToken', 'Role',
    'AuditEvent', 'SecurityEvent',
]
