"""
resellersync - ResellerClub integration core
Rate-limited API client, resource services, pricing cache and reconciliation
"""

__version__ = "0.1.0"
