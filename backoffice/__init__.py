"""
Jewellery Back-Office

Reporting engine and REST API behind the admin dashboard.
"""

__version__ = "1.0.0"
