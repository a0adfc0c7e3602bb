"""SQLAlchemy models package."""

from .identity import AliasType, EndUser, EndUserAlias, EndUserMerge  # noqa: F401
from .merchant import Merchant, MerchantClient, MerchantStatus  # noqa: F401
from .ledger import LedgerEntry, LedgerEntryType  # noqa: F401
from .voucher import PointVoucher, VoucherStatus  # noqa: F401
