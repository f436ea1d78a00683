"""
Academy Certification Views Package

Author: Academy Development Team
Version: 1.0.0
"""

from .admin_views import *
from .attempt_views import *
from .catalog_views import *
from .certificate_views import *
