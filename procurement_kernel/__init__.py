"""
Procurement Kernel

The authoritative core of the purchase-order approval engine:
- Canonical order lifecycle with legacy status mapping
- Multi-party approval requests with quorum and veto
- Optimistic compare-and-swap persistence
- Audit trail for every decision and failure
- Receiving projection kept in sync with order state
"""

__version__ = "0.1.0"
