"""
Academy Payments Views Package

Author: Academy Development Team
Version: 1.0.0
"""

from .admin_views import *
from .purchase_views import *
