"""
Wiring for the moderation engine.

``ModerationEngine.build`` assembles every component around one store and
one clock so the cogs and ``main`` share a single instance of each.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from modwarden.configuration.community_policy import CommunityPolicyStore
from modwarden.database.db_connection import ConnectionManager
from modwarden.moderation.actuator import PunishmentActuator
from modwarden.moderation.appeal_workflow import AppealWorkflow
from modwarden.moderation.clock import Clock, SystemClock
from modwarden.moderation.escalation_engine import EscalationEngine
from modwarden.moderation.infraction_store import InfractionStore
from modwarden.moderation.moderation_service import ModerationService
from modwarden.moderation.mute_scheduler import MuteScheduler
from modwarden.moderation.notifications import NotificationSink


@dataclass
class ModerationEngine:
    store: InfractionStore
    policies: CommunityPolicyStore
    actuator: PunishmentActuator
    clock: Clock
    scheduler: MuteScheduler
    moderation: ModerationService
    escalation: EscalationEngine
    appeals: AppealWorkflow
    sink: Optional[NotificationSink] = None

    @classmethod
    def build(
        cls,
        connection: ConnectionManager,
        policies: CommunityPolicyStore,
        actuator: PunishmentActuator,
        *,
        sink: Optional[NotificationSink] = None,
        clock: Optional[Clock] = None,
    ) -> "ModerationEngine":
        clock = clock or SystemClock()
        store = InfractionStore(connection)
        scheduler = MuteScheduler(store, actuator, policies, clock, sink)
        moderation = ModerationService(store, actuator, policies, scheduler, clock, sink)
        return cls(
            store=store,
            policies=policies,
            actuator=actuator,
            clock=clock,
            scheduler=scheduler,
            moderation=moderation,
            escalation=EscalationEngine(store, policies, moderation),
            appeals=AppealWorkflow(store, policies, scheduler, actuator, clock, sink),
            sink=sink,
        )
