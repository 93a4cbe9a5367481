"""
Small helpers shared by the slash-command cogs.
"""

from __future__ import annotations

from typing import Optional

import discord

from modwarden.datatypes.policy_datatypes import CommunityPolicy
from modwarden.errors import (
    ConflictError,
    ExternalActionFailure,
    ModerationError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)

# Choices offered for the ban message deletion option, in seconds
DELETE_MESSAGE_CHOICES = [
    discord.OptionChoice(name="Don't delete", value=0),
    discord.OptionChoice(name="Last hour", value=3600),
    discord.OptionChoice(name="Last 24 hours", value=86400),
    discord.OptionChoice(name="Last 7 days", value=604800),
]


def has_permissions(application_context: discord.ApplicationContext, **required_permissions) -> bool:
    """
    Check if the command issuer has all specified permissions in the guild.

    Args:
        application_context (discord.ApplicationContext): The command context.
        **required_permissions: Permission flags to check.

    Returns:
        bool: True if all permissions are present, False otherwise.
    """
    if not isinstance(application_context.author, discord.Member):
        return False
    return all(
        getattr(application_context.author.guild_permissions, permission_name, False)
        for permission_name in required_permissions
    )


def is_moderator(
    application_context: discord.ApplicationContext, policy: CommunityPolicy, permission_name: str
) -> bool:
    """True when the issuer holds ``permission_name`` or the community's moderator role."""
    if has_permissions(application_context, **{permission_name: True}):
        return True
    author = application_context.author
    if policy.moderator_role_id is None or not isinstance(author, discord.Member):
        return False
    return any(role.id == policy.moderator_role_id for role in author.roles)


def describe_error(exc: ModerationError) -> str:
    """Short, user-facing text for an engine error."""
    if isinstance(exc, PermissionDenied):
        return "I don't have permission to do that. Check my role position and permissions."
    if isinstance(exc, ExternalActionFailure):
        return f"Discord refused the action: {exc}"
    if isinstance(exc, (ValidationError, NotFoundError, ConflictError)):
        return str(exc)
    return "Something went wrong while processing the command."


def mention(user_id: Optional[str]) -> str:
    if not user_id or not user_id.isdigit():
        return "System"
    return f"<@{user_id}>"
