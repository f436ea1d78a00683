"""
Academy Courses Views Package

Catalog browsing, course authoring and publishing, instructor dashboards and
session-gated video delivery.

Author: Academy Development Team
Version: 1.0.0
"""

from .course_views import *
from .instructor_views import *
from .video_views import *
