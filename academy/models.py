"""
Academy Models Registry

Imports and exposes all models from the logical sub-packages so they are
registered with Django's ORM under the single `academy` app label.

Architecture:
- users/: wallet identities, profiles, payment wallets, instructor applications
- courses/: courses, sections, lessons and video sessions
- payments/: payment tokens, fee settings, purchases with escrow, audit log
- learning/: notes, questions and reviews
- certifications/: professional certification tests, attempts and certificates

Author: Academy Development Team
Version: 1.0.0
"""

from .users.models import *
from .courses.models import *
from .payments.models import *
from .learning.models import *
from .certifications.models import *
