"""
Land Market — a property-listing marketplace with an optional blockchain mirror.

Architecture: Record Store (authoritative) → Listing Registry / Purchase Workflow → Ledger mirror
Philosophy:  The store decides. The ledger only echoes.
"""

__version__ = "1.0.0"
