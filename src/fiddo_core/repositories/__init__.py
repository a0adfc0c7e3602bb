"""Entity repositories bound to a single session."""

from .end_users import AliasRepository, EndUserRepository, MergeRecordRepository
from .ledger import LedgerRepository
from .merchants import MerchantClientRepository, MerchantRepository
from .vouchers import VoucherRepository

__all__ = [
    "AliasRepository",
    "EndUserRepository",
    "LedgerRepository",
    "MergeRecordRepository",
    "MerchantClientRepository",
    "MerchantRepository",
    "VoucherRepository",
]
