from pnode_watch.models.alert import AlertHistory, UserAlert
from pnode_watch.models.base import Base
from pnode_watch.models.lease import JobLease
from pnode_watch.models.snapshot import NetworkSnapshot, NodeSnapshot
from pnode_watch.models.subscription import AlertSubscription, VerificationToken

__all__ = [
    "AlertHistory",
    "AlertSubscription",
    "Base",
    "JobLease",
    "NetworkSnapshot",
    "NodeSnapshot",
    "UserAlert",
    "VerificationToken",
]
