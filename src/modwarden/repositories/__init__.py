from modwarden.repositories.appeal_repo import AppealRepository
from modwarden.repositories.infraction_repo import InfractionRepository
from modwarden.repositories.policy_repo import CommunityPolicyRepository, CommunityPolicyRow

__all__ = [
    "AppealRepository",
    "InfractionRepository",
    "CommunityPolicyRepository",
    "CommunityPolicyRow",
]
