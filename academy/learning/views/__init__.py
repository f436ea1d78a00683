"""
Academy Learning Views Package

Author: Academy Development Team
Version: 1.0.0
"""

from .note_views import *
from .question_views import *
from .review_views import *
