"""
Tribunal dispatch.

Sends a hypothesis to a panel of role-played critique agents over Agent
Mail and collects their replies from the shared thread.
"""

import logging
import re
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from brennerbot.loop.schemas import HypothesisCard, InputValidationError
from brennerbot.tribunal.mail_client import AgentMailClient, AgentMailError, AgentMailMessage

logger = logging.getLogger(__name__)

_ROLE_BRACKET_RE = re.compile(r"TRIBUNAL\[([a-z_]+)\]")


class TribunalRole(str, Enum):
    """Critique roles on the tribunal."""

    DEVILS_ADVOCATE = "devils_advocate"
    EXPERIMENT_DESIGNER = "experiment_designer"
    STATISTICIAN = "statistician"
    BRENNER_CHANNELER = "brenner_channeler"
    SYNTHESIS = "synthesis"


ROLE_DISPLAY_NAMES: dict[TribunalRole, str] = {
    TribunalRole.DEVILS_ADVOCATE: "Devil's Advocate",
    TribunalRole.EXPERIMENT_DESIGNER: "Experiment Designer",
    TribunalRole.STATISTICIAN: "Statistician",
    TribunalRole.BRENNER_CHANNELER: "Brenner Channeler",
    TribunalRole.SYNTHESIS: "Synthesis",
}

ROLE_FOCUS: dict[TribunalRole, str] = {
    TribunalRole.DEVILS_ADVOCATE: (
        "Identify unstated assumptions, find alternative explanations and attack the mechanism."
    ),
    TribunalRole.EXPERIMENT_DESIGNER: (
        "Identify confounds, suggest controls and evaluate the discriminative power of candidate tests."
    ),
    TribunalRole.STATISTICIAN: (
        "Give effect size and sample size guidance and flag multiple-testing risks."
    ),
    TribunalRole.BRENNER_CHANNELER: (
        "Demand the experiment, seek exclusion over confirmation and remember both could be wrong."
    ),
    TribunalRole.SYNTHESIS: (
        "Integrate the other perspectives, surface tensions and propose a confidence update."
    ),
}

DEFAULT_ROLES: tuple[TribunalRole, ...] = (
    TribunalRole.DEVILS_ADVOCATE,
    TribunalRole.EXPERIMENT_DESIGNER,
    TribunalRole.STATISTICIAN,
    TribunalRole.BRENNER_CHANNELER,
)


class TaskStatus(str, Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    RECEIVED = "received"
    ERROR = "error"


class AgentResponse(BaseModel):
    """A reply from one tribunal role."""

    role: TribunalRole
    message_id: int
    sender: str | None = None
    content: str
    received_at: str | None = None


class AgentTask(BaseModel):
    """One role's share of a dispatch."""

    role: TribunalRole
    status: TaskStatus = TaskStatus.PENDING
    subject: str
    body_md: str
    message_id: int | None = None
    dispatched_at: datetime | None = None
    response: AgentResponse | None = None
    error: str | None = None


class AgentDispatch(BaseModel):
    """A hypothesis sent to the tribunal, with per-role progress."""

    session_id: str
    hypothesis_id: str
    thread_id: str
    project_key: str
    sender_name: str
    tasks: list[AgentTask] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def responses(self) -> list[AgentResponse]:
        return [task.response for task in self.tasks if task.response is not None]

    @property
    def complete(self) -> bool:
        return bool(self.tasks) and all(task.status is TaskStatus.RECEIVED for task in self.tasks)


def tribunal_subject(role: TribunalRole, hypothesis_id: str) -> str:
    return f"TRIBUNAL[{role.value}]: {hypothesis_id}"


def _bullets(items: Sequence[str]) -> str:
    cleaned = [item.strip() for item in items if item and item.strip()]
    if not cleaned:
        return "- (none stated)"
    return "\n".join(f"- {item}" for item in cleaned)


def build_task_body(role: TribunalRole, hypothesis: HypothesisCard) -> str:
    """Markdown prompt sent to one role."""
    return "\n".join(
        [
            f"# {ROLE_DISPLAY_NAMES[role]} review",
            "",
            f"**Hypothesis** ({hypothesis.id}): {hypothesis.statement}",
            "",
            f"**Mechanism:** {hypothesis.mechanism or '(none stated)'}",
            "",
            "## Predictions if true",
            _bullets(hypothesis.predictions_if_true),
            "",
            "## Impossible if true",
            _bullets(hypothesis.impossible_if_true),
            "",
            "## Your focus",
            ROLE_FOCUS[role],
            "",
            f"Reply in this thread and keep `TRIBUNAL[{role.value}]` in the subject.",
        ]
    )


def create_dispatch(
    *,
    session_id: str,
    hypothesis: HypothesisCard,
    project_key: str,
    sender_name: str,
    roles: Sequence[TribunalRole] = DEFAULT_ROLES,
    now: datetime | None = None,
) -> AgentDispatch:
    """
    Build a dispatch with one pending task per role.

    Args:
        session_id: Owning session.
        hypothesis: Card under review.
        project_key: Agent Mail project key.
        sender_name: Agent name the prompts are sent from.
        roles: Roles to consult; duplicates are ignored.
        now: Creation time.

    Returns:
        A dispatch whose thread id is ``TRIBUNAL-<session>-<suffix>``.
    """
    if not session_id:
        raise InputValidationError("session_id", "must not be empty")
    if not roles:
        raise InputValidationError("roles", "at least one tribunal role is required")

    unique_roles = list(dict.fromkeys(TribunalRole(role) for role in roles))
    tasks = [
        AgentTask(
            role=role,
            subject=tribunal_subject(role, hypothesis.id),
            body_md=build_task_body(role, hypothesis),
        )
        for role in unique_roles
    ]
    return AgentDispatch(
        session_id=session_id,
        hypothesis_id=hypothesis.id,
        thread_id=f"TRIBUNAL-{session_id}-{uuid4().hex[:8]}",
        project_key=project_key,
        sender_name=sender_name,
        tasks=tasks,
        created_at=now or datetime.now(timezone.utc),
    )


def _recipients_for(role: TribunalRole, recipients: Mapping[TribunalRole, str] | Sequence[str]) -> list[str]:
    if isinstance(recipients, Mapping):
        agent = recipients.get(role)
        return [agent] if agent else []
    return list(recipients)


async def send_dispatch(
    client: AgentMailClient,
    dispatch: AgentDispatch,
    recipients: Mapping[TribunalRole, str] | Sequence[str],
    *,
    now: datetime | None = None,
) -> AgentDispatch:
    """
    Send every pending task of a dispatch.

    Args:
        client: Agent Mail client.
        dispatch: Dispatch to send.
        recipients: Agent name per role, or one list of agents for all roles.
        now: Dispatch timestamp.

    Returns:
        Updated dispatch; failed sends are marked ``error`` and do not stop
        the remaining tasks.
    """
    now = now or datetime.now(timezone.utc)
    tasks: list[AgentTask] = []
    for task in dispatch.tasks:
        if task.status is not TaskStatus.PENDING:
            tasks.append(task)
            continue

        to = _recipients_for(task.role, recipients)
        if not to:
            tasks.append(task.model_copy(update={"status": TaskStatus.ERROR, "error": "no recipient for role"}))
            continue

        try:
            result = await client.send_message(
                project_key=dispatch.project_key,
                sender_name=dispatch.sender_name,
                to=to,
                subject=task.subject,
                body_md=task.body_md,
                thread_id=dispatch.thread_id,
            )
        except AgentMailError as e:
            logger.warning(f"Tribunal dispatch failed for {task.role.value}: {e}")
            tasks.append(task.model_copy(update={"status": TaskStatus.ERROR, "error": str(e)}))
            continue

        tasks.append(
            task.model_copy(
                update={
                    "status": TaskStatus.DISPATCHED,
                    "message_id": result.message_id,
                    "dispatched_at": now,
                    "error": None,
                }
            )
        )

    logger.info(f"Dispatched {sum(t.status is TaskStatus.DISPATCHED for t in tasks)} task(s) on {dispatch.thread_id}")
    return dispatch.model_copy(update={"tasks": tasks})


def _match_task(message: AgentMailMessage, by_message_id: dict[int, int], by_role: dict[str, int]) -> int | None:
    if message.reply_to is not None and message.reply_to in by_message_id:
        return by_message_id[message.reply_to]
    match = _ROLE_BRACKET_RE.search(message.subject or "")
    if match:
        return by_role.get(match.group(1))
    return None


async def poll_for_responses(client: AgentMailClient, dispatch: AgentDispatch) -> AgentDispatch:
    """
    Read the dispatch thread and attach replies to their tasks.

    A reply is matched to a task by ``reply_to`` first and by the
    ``TRIBUNAL[role]`` subject bracket second. Replies matching neither are
    ignored, as are messages from the dispatch sender. The first matching
    reply per task wins.
    """
    thread = await client.read_thread(project_key=dispatch.project_key, thread_id=dispatch.thread_id)

    tasks = list(dispatch.tasks)
    prompt_ids = {task.message_id for task in tasks if task.message_id is not None}
    by_message_id = {task.message_id: i for i, task in enumerate(tasks) if task.message_id is not None}
    by_role = {task.role.value: i for i, task in enumerate(tasks)}

    for message in thread.messages:
        if message.id in prompt_ids or message.sender == dispatch.sender_name:
            continue
        index = _match_task(message, by_message_id, by_role)
        if index is None:
            continue
        task = tasks[index]
        if task.status is not TaskStatus.DISPATCHED:
            continue
        tasks[index] = task.model_copy(
            update={
                "status": TaskStatus.RECEIVED,
                "response": AgentResponse(
                    role=task.role,
                    message_id=message.id,
                    sender=message.sender,
                    content=message.body_md,
                    received_at=message.created_ts,
                ),
            }
        )

    updated = dispatch.model_copy(update={"tasks": tasks})
    logger.debug(f"Polled {dispatch.thread_id}: {len(updated.responses)}/{len(tasks)} responses")
    return updated
