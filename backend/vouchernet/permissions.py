"""
Permission Constants and Role Mappings

WHY: Centralized permission definitions ensure consistency across the application.
Every protected route names exactly one permission code from this module.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- A user has exactly one role; the role determines its permission set
- Money-moving voucher operations belong to merchants only
- Confirming money received outside the gateway belongs to the franchisor only
"""

from .models import Role


# =============================================================================
# PERMISSION CODES
# =============================================================================

VIEW_VOUCHERS = "VIEW_VOUCHERS"
ISSUE_VOUCHER = "ISSUE_VOUCHER"
RECHARGE_VOUCHER = "RECHARGE_VOUCHER"
REDEEM_VOUCHER = "REDEEM_VOUCHER"

VIEW_TRANSACTIONS = "VIEW_TRANSACTIONS"
CANCEL_TRANSACTION = "CANCEL_TRANSACTION"

VIEW_COMMISSIONS = "VIEW_COMMISSIONS"
CANCEL_COMMISSION = "CANCEL_COMMISSION"
PAY_COMMISSION = "PAY_COMMISSION"

VIEW_CHARGES = "VIEW_CHARGES"
CREATE_ACTIVATION_CHARGE = "CREATE_ACTIVATION_CHARGE"
MARK_CHARGE_PAID = "MARK_CHARGE_PAID"
CANCEL_CHARGE = "CANCEL_CHARGE"

VIEW_MERCHANTS = "VIEW_MERCHANTS"
DEACTIVATE_MERCHANT = "DEACTIVATE_MERCHANT"


ROLE_PERMISSIONS = {
    Role.FRANCHISOR: {
        VIEW_VOUCHERS,
        ISSUE_VOUCHER,
        VIEW_TRANSACTIONS,
        CANCEL_TRANSACTION,
        VIEW_COMMISSIONS,
        CANCEL_COMMISSION,
        PAY_COMMISSION,
        VIEW_CHARGES,
        CREATE_ACTIVATION_CHARGE,
        MARK_CHARGE_PAID,
        CANCEL_CHARGE,
        VIEW_MERCHANTS,
        DEACTIVATE_MERCHANT,
    },
    Role.FRANCHISEE: {
        VIEW_VOUCHERS,
        ISSUE_VOUCHER,
        VIEW_TRANSACTIONS,
        CANCEL_TRANSACTION,
        VIEW_COMMISSIONS,
        VIEW_CHARGES,
        CREATE_ACTIVATION_CHARGE,
        VIEW_MERCHANTS,
    },
    Role.MERCHANT: {
        VIEW_VOUCHERS,
        RECHARGE_VOUCHER,
        REDEEM_VOUCHER,
        VIEW_TRANSACTIONS,
        VIEW_CHARGES,
        VIEW_MERCHANTS,
    },
    # End users only authenticate and read their own profile
    Role.END_USER: set(),
}
