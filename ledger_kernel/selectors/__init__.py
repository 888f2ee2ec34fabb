"""Read-only query selectors."""

from ledger_kernel.selectors.voucher_selector import VoucherSelector

__all__ = ["VoucherSelector"]
