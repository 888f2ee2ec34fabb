"""
Voucher Ledger Kernel

The persistence and domain core of the universal transaction ledger:
- One polymorphic voucher record per financial event
- Role-gated approval workflow with an embedded append-only history
- Optimistic-concurrency versioning on every write
- Collision-free voucher numbering and statement references
"""

__version__ = "0.1.0"
