"""Identity resolution and points ledger core for the fiddo loyalty platform."""

from fiddo_core.operations import (
    adjust,
    claim_gift_voucher,
    create_gift_voucher,
    credit,
    ensure_merchant_client,
    merge_clients,
    redeem,
    resolve_identity,
    sweep_expired_vouchers,
)

__all__ = [
    "adjust",
    "claim_gift_voucher",
    "create_gift_voucher",
    "credit",
    "ensure_merchant_client",
    "merge_clients",
    "redeem",
    "resolve_identity",
    "sweep_expired_vouchers",
]
