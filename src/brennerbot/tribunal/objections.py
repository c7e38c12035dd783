"""
Objection extraction from tribunal replies.

Tribunal agents put their main criticism under a ``### Key Objection``
heading. This module pulls those blocks out of reply markdown, classifies
each one by type and severity, and works out which role raised it.
"""

import logging
import re
from collections.abc import Iterable, Sequence
from enum import Enum

from pydantic import BaseModel, Field

from brennerbot.loop.analytics import ObjectionStats
from brennerbot.tribunal.dispatch import AgentDispatch, TribunalRole
from brennerbot.tribunal.mail_client import AgentMailMessage

logger = logging.getLogger(__name__)

SUMMARY_MAX_LENGTH = 220

_HEADING_RE = re.compile(r"^ {0,3}#{1,6}\s+(?P<title>.*?)\s*#*\s*$")
_FENCE_RE = re.compile(r"^ {0,3}(```|~~~)")
_KEY_OBJECTION_RE = re.compile(r"^key objections?\W*$", re.IGNORECASE)
_ROLE_BRACKET_RE = re.compile(r"TRIBUNAL\[([a-z_]+)\]")
_NEGATION_RE = re.compile(r"(?:\bnot|n't|\bnever|\bcannot|\bno)\s+$")


class ObjectionType(str, Enum):
    """What kind of problem an objection points at."""

    REVERSE_CAUSATION = "reverse_causation"
    SELECTION_BIAS = "selection_bias"
    CONFOUND_IDENTIFIED = "confound_identified"
    MEASUREMENT_ISSUE = "measurement_issue"
    EFFECT_SIZE_CONCERN = "effect_size_concern"
    GENERALIZATION_PROBLEM = "generalization_problem"
    MISSING_EVIDENCE = "missing_evidence"
    LOGIC_ERROR = "logic_error"
    ALTERNATIVE_EXPLANATION = "alternative_explanation"
    OTHER = "other"


class ObjectionSeverity(str, Enum):
    """How badly an objection damages the hypothesis."""

    FATAL = "fatal"
    SERIOUS = "serious"
    MODERATE = "moderate"
    MINOR = "minor"


# Checked in order; the first matching type wins.
_TYPE_PATTERNS: tuple[tuple[ObjectionType, re.Pattern[str]], ...] = (
    (ObjectionType.REVERSE_CAUSATION, re.compile(r"reverse[\s-]+caus|y could cause x")),
    (ObjectionType.SELECTION_BIAS, re.compile(r"selection bias|self[\s-]selection|sampling bias")),
    (ObjectionType.CONFOUND_IDENTIFIED, re.compile(r"confound|third variable|lurking variable")),
    (ObjectionType.MEASUREMENT_ISSUE, re.compile(r"measurement|self[\s-]report|operationali[sz]")),
    (ObjectionType.EFFECT_SIZE_CONCERN, re.compile(r"effect size|statistical power|underpowered")),
    (ObjectionType.GENERALIZATION_PROBLEM, re.compile(r"external validity|generaliz|generalis")),
    (ObjectionType.MISSING_EVIDENCE, re.compile(r"no evidence|lack of evidence|missing evidence|unsupported")),
    (
        ObjectionType.LOGIC_ERROR,
        re.compile(r"non[\s-]sequitur|doesn't follow|does not follow|circular reasoning|\blogic(?:al)?\b"),
    ),
    (
        ObjectionType.ALTERNATIVE_EXPLANATION,
        re.compile(r"another explanation|alternative explanation|could instead|alternatively"),
    ),
)

_FATAL_RE = re.compile(r"deal[\s-]?breaker|cannot be true|impossible|\bfatal\b|\brules? out\b|\bruled out\b")
_SERIOUS_RE = re.compile(r"\bserious\b|\bmajor\b|\bfundamental\b|\bundermines?\b|strong objection|\bcritical\b")
_MINOR_RE = re.compile(r"\bminor\b|\bnit\b|\bquibble\b|\bsmall issue\b")

# Subject keywords for replies that dropped the TRIBUNAL[role] bracket.
_ROLE_KEYWORDS: tuple[tuple[TribunalRole, str], ...] = (
    (TribunalRole.DEVILS_ADVOCATE, "devils advocate"),
    (TribunalRole.EXPERIMENT_DESIGNER, "experiment designer"),
    (TribunalRole.STATISTICIAN, "statistician"),
    (TribunalRole.BRENNER_CHANNELER, "brenner"),
    (TribunalRole.SYNTHESIS, "synthesis"),
)


class ObjectionSource(BaseModel):
    """Where an objection came from."""

    message_id: int
    role: TribunalRole | None = None
    agent_name: str | None = None
    thread_id: str | None = None
    subject: str = ""


class TribunalObjection(BaseModel):
    """One classified Key Objection block."""

    id: str = Field(..., description="<message id>:<block index>")
    type: ObjectionType
    severity: ObjectionSeverity
    summary: str
    full_argument: str
    source: ObjectionSource
    created_at: str | None = None


def extract_key_objection_blocks(markdown: str) -> list[str]:
    """
    Return the text under every ``Key Objection`` heading.

    A block runs until the next heading of any level. Headings inside fenced
    code blocks do not end a block. Blocks are stripped of surrounding blank
    lines; empty blocks are dropped.
    """
    blocks: list[str] = []
    current: list[str] | None = None
    in_fence = False

    for line in (markdown or "").splitlines():
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            if current is not None:
                current.append(line)
            continue

        heading = None if in_fence else _HEADING_RE.match(line)
        if heading:
            if current is not None:
                blocks.append("\n".join(current).strip())
            current = [] if _KEY_OBJECTION_RE.match(heading.group("title")) else None
            continue

        if current is not None:
            current.append(line)

    if current is not None:
        blocks.append("\n".join(current).strip())
    return [block for block in blocks if block]


def _strip_code(text: str) -> str:
    kept: list[str] = []
    in_fence = False
    for line in text.splitlines():
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if not in_fence:
            kept.append(line)
    return "\n".join(kept)


def summarize_objection(block: str) -> str:
    """Collapse a block to one line of prose, truncated with an ellipsis."""
    text = _strip_code(block)
    text = re.sub(r"^\s*(?:[-*+]|\d+\.)\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"[*_`]+", "", text)
    text = " ".join(text.split())
    if len(text) > SUMMARY_MAX_LENGTH:
        text = text[: SUMMARY_MAX_LENGTH - 1].rstrip() + "…"
    return text


def classify_objection_type(text: str) -> ObjectionType:
    lowered = text.lower()
    for objection_type, pattern in _TYPE_PATTERNS:
        if pattern.search(lowered):
            return objection_type
    return ObjectionType.OTHER


def _has_unnegated(pattern: re.Pattern[str], text: str) -> bool:
    for match in pattern.finditer(text):
        if not _NEGATION_RE.search(text[: match.start()]):
            return True
    return False


def classify_severity(text: str) -> ObjectionSeverity:
    """
    Classify severity from marker words.

    Fatal markers preceded by a negation ("does not rule out") are ignored.
    Text with no marker is moderate.
    """
    lowered = text.lower()
    if _has_unnegated(_FATAL_RE, lowered):
        return ObjectionSeverity.FATAL
    if _SERIOUS_RE.search(lowered):
        return ObjectionSeverity.SERIOUS
    if _MINOR_RE.search(lowered):
        return ObjectionSeverity.MINOR
    return ObjectionSeverity.MODERATE


def severity_rank(severity: ObjectionSeverity) -> int:
    """Sort key: higher is worse."""
    if severity is ObjectionSeverity.FATAL:
        return 3
    if severity is ObjectionSeverity.SERIOUS:
        return 2
    if severity is ObjectionSeverity.MODERATE:
        return 1
    if severity is ObjectionSeverity.MINOR:
        return 0
    raise ValueError(f"unknown objection severity {severity!r}")


def infer_role_from_subject(subject: str | None) -> TribunalRole | None:
    """Role from a ``TRIBUNAL[role]`` bracket, else from role words in the subject."""
    if not subject:
        return None
    match = _ROLE_BRACKET_RE.search(subject)
    if match:
        try:
            return TribunalRole(match.group(1))
        except ValueError:
            pass
    normalized = " ".join(re.sub(r"[^a-z0-9]+", " ", subject.lower().replace("'", "")).split())
    for role, keyword in _ROLE_KEYWORDS:
        if keyword in normalized:
            return role
    return None


def _objections_from_body(
    body_md: str,
    *,
    message_id: int,
    role: TribunalRole | None,
    agent_name: str | None,
    thread_id: str | None,
    subject: str,
    created_at: str | None,
) -> list[TribunalObjection]:
    objections: list[TribunalObjection] = []
    for index, block in enumerate(extract_key_objection_blocks(body_md)):
        summary = summarize_objection(block)
        if not summary:
            continue
        argument = _strip_code(block).strip()
        objections.append(
            TribunalObjection(
                id=f"{message_id}:{index}",
                type=classify_objection_type(argument),
                severity=classify_severity(argument),
                summary=summary,
                full_argument=block,
                source=ObjectionSource(
                    message_id=message_id,
                    role=role,
                    agent_name=agent_name,
                    thread_id=thread_id,
                    subject=subject,
                ),
                created_at=created_at,
            )
        )
    return objections


def extract_tribunal_objections(messages: Iterable[AgentMailMessage]) -> list[TribunalObjection]:
    """
    Extract classified objections from Agent Mail messages.

    Args:
        messages: Thread or inbox messages; messages without a body are skipped.

    Returns:
        Objections in message order, with ids ``<message id>:<block index>``.
    """
    objections: list[TribunalObjection] = []
    for message in messages:
        if not message.body_md:
            continue
        objections.extend(
            _objections_from_body(
                message.body_md,
                message_id=message.id,
                role=infer_role_from_subject(message.subject),
                agent_name=message.sender,
                thread_id=message.thread_id,
                subject=message.subject,
                created_at=message.created_ts,
            )
        )
    logger.debug(f"Extracted {len(objections)} objection(s)")
    return objections


def extract_dispatch_objections(dispatch: AgentDispatch) -> list[TribunalObjection]:
    """Extract objections from the replies collected on a dispatch."""
    objections: list[TribunalObjection] = []
    for task in dispatch.tasks:
        response = task.response
        if response is None or not response.content:
            continue
        objections.extend(
            _objections_from_body(
                response.content,
                message_id=response.message_id,
                role=response.role,
                agent_name=response.sender,
                thread_id=dispatch.thread_id,
                subject=task.subject,
                created_at=response.received_at,
            )
        )
    return objections


def rank_objections(objections: Sequence[TribunalObjection]) -> list[TribunalObjection]:
    """Most severe first; equal severities keep their order."""
    return sorted(objections, key=lambda o: severity_rank(o.severity), reverse=True)


def build_objection_stats(
    objections: Iterable[TribunalObjection],
    *,
    addressed_ids: Iterable[str] = (),
    accepted_ids: Iterable[str] = (),
) -> ObjectionStats:
    """
    Count how many extracted objections were addressed and accepted.

    An accepted objection also counts as addressed. Ids that match no
    extracted objection are ignored.
    """
    known = {objection.id for objection in objections}
    accepted = known.intersection(accepted_ids)
    addressed = known.intersection(addressed_ids) | accepted
    return ObjectionStats(addressed=len(addressed), accepted=len(accepted))
