"""Models package."""

from .user import User
from .clip_subscription import ClipSubscription
from .business_clip import BusinessClip
from .clip_refill import ClipRefill
from .clip_renewal import ClipRenewal
from .clip_usage_history import ClipUsageHistory
from .project import Project
from .offer import Offer
