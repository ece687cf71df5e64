"""
Privacy-conscious page-view and click analytics for a portfolio site.
"""

__version__ = "1.0.0"
