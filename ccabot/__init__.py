"""
Unattended bidder for continuous clearing auctions (CCA).
"""

__version__ = "0.1.0"
