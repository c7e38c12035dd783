"""
Tribunal module.

Dispatches hypotheses to role-played critique agents over Agent Mail and
collects their replies, then extracts and classifies the objections they
raise.
"""

from brennerbot.tribunal.dispatch import (
    AgentDispatch,
    AgentResponse,
    AgentTask,
    TaskStatus,
    TribunalRole,
    create_dispatch,
    poll_for_responses,
    send_dispatch,
)
from brennerbot.tribunal.mail_client import (
    AgentMailClient,
    AgentMailError,
    AgentMailMessage,
    AgentMailThread,
)
from brennerbot.tribunal.objections import (
    ObjectionSeverity,
    ObjectionType,
    TribunalObjection,
    build_objection_stats,
    extract_dispatch_objections,
    extract_key_objection_blocks,
    extract_tribunal_objections,
)

__all__ = [
    "AgentDispatch",
    "AgentResponse",
    "AgentTask",
    "TaskStatus",
    "TribunalRole",
    "create_dispatch",
    "poll_for_responses",
    "send_dispatch",
    "AgentMailClient",
    "AgentMailError",
    "AgentMailMessage",
    "AgentMailThread",
    "ObjectionSeverity",
    "ObjectionType",
    "TribunalObjection",
    "build_objection_stats",
    "extract_dispatch_objections",
    "extract_key_objection_blocks",
    "extract_tribunal_objections",
]
