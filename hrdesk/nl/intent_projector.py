"""Turn an action intent into a proposal the user has to confirm.

The projector never executes anything.  It pulls the handful of fields a
handler needs out of the message (regex first, then an extraction call
through the LLM router), resolves names to ids through the data store and
renders a one-line summary.  When something is missing it asks instead of
guessing.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from loguru import logger

from hrdesk.governance.roles import Role, canonical_role
from hrdesk.governance.scoping import candidate_in_scope, employee_in_scope
from hrdesk.nl.intent_engine import ConfirmationType, Intent, IntentKind, Scope
from hrdesk.providers.base import LLMParams, ProviderError
from hrdesk.providers.router import LLMRouter, LLMTaskContext, Priority, ProviderUnavailable, TaskType
from hrdesk.storage.repository import DataStore, Entity
from hrdesk.utils.helpers import new_id, utcnow

if TYPE_CHECKING:
    from hrdesk.session.manager import ConversationContext

__all__ = [
    "ActionProposal",
    "ConfirmationType",
    "IntentProjector",
    "ProposalOutcome",
    "REQUIRED_FIELDS",
    "STAGE_LABELS",
]

NOT_FOUND_MESSAGE = "I couldn't find a matching record that you can act on. Could you check the details and try again?"

REQUIRED_FIELDS: dict[ConfirmationType, tuple[str, ...]] = {
    ConfirmationType.SCHEDULE_INTERVIEW: ("candidate_id", "date"),
    ConfirmationType.MOVE_CANDIDATE: ("candidate_id", "target_status"),
    ConfirmationType.APPROVE_PTO: ("request_id",),
    ConfirmationType.DENY_PTO: ("request_id",),
    ConfirmationType.REQUEST_PTO: ("start_date", "end_date"),
    ConfirmationType.CREATE_EMPLOYEE: ("first_name", "last_name", "email"),
    ConfirmationType.ASSIGN_TOOL: ("tool_id", "employee_id"),
    ConfirmationType.RETURN_TOOL: ("assignment_id",),
}

STAGE_LABELS = {
    "APPLIED": "Application Review",
    "NEW": "Application Review",
    "SCREENING": "Initial Screening",
    "INTERVIEW": "Interview",
    "OFFER": "Offer Extended",
    "HIRED": "Hired",
    "REJECTED": "Rejected",
    "WITHDRAWN": "Withdrawn",
}

_STATUS_WORDS = {
    "applied": "APPLIED", "application": "APPLIED", "new": "APPLIED",
    "screening": "SCREENING", "screen": "SCREENING",
    "interview": "INTERVIEW", "interviewing": "INTERVIEW",
    "offer": "OFFER",
    "hired": "HIRED", "hire": "HIRED",
    "rejected": "REJECTED", "reject": "REJECTED",
    "withdrawn": "WITHDRAWN",
}

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_ISO_DATE_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
_REL_DATE_RE = re.compile(r"\b(today|tomorrow|(?:next\s+)?(?:" + "|".join(_WEEKDAYS) + r"))\b", re.I)
_TIME_RE = re.compile(r"\bat\s+(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\b", re.I)
_REQUEST_ID_RE = re.compile(r"(?:#\s*|\brequest\s+(?:id\s+)?)([A-Za-z0-9][\w-]*\d[\w-]*|\d+)", re.I)
_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_NAME = r"([A-Z][\w'-]*(?:\s+[A-Z][\w'-]*)?)"
_POSSESSIVE_NAME_RE = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)['’]s\b")
_INTERVIEW_WITH_RE = re.compile(r"\binterview\s+(?:with|for)\s+" + _NAME)
_INTERVIEW_TYPE_RE = re.compile(r"\b(phone|video|onsite|on-site|in[\s-]person)\b", re.I)
_MOVE_RE = re.compile(r"\b(?:move|advance|progress)\s+(.+?)\s+(?:to|into)\s+(?:the\s+)?([a-z-]+)", re.I)
_NEW_EMPLOYEE_RE = re.compile(
    r"\b(?:employee|new\s+hire|user|team\s+member|staff\s+member)\s+(?:named\s+|called\s+)?([A-Z][\w'-]+)\s+([A-Z][\w'-]+)"
)
_AS_ROLE_RE = re.compile(r"\bas\s+(?:an?\s+)?([A-Za-z_ ]+?)(?=\s+(?:in|with|starting|on)\b|[.,!?]|$)", re.I)
_IN_DEPT_RE = re.compile(r"\bin\s+(?:the\s+)?([A-Z][\w&-]*)(?:\s+(?:department|dept|team))?")
_ASSIGN_TO_RE = re.compile(r"\bassign\s+(?:an?\s+|the\s+|one\s+)?(.+?)\s+to\s+(.+?)\s*[.!?]?$", re.I)
_ASSIGN_NAME_FIRST_RE = re.compile(r"\b(?i:assign)\s+" + _NAME + r"\s+(?:an?|the|one)\s+(.+?)\s*[.!?]?$")
_RETURN_FROM_RE = re.compile(r"\b(?:return|check\s+in)\s+(?:the\s+|an?\s+|my\s+)?(.+?)(?:\s+from\s+(.+?))?\s*[.!?]?$", re.I)
_REASON_RE = re.compile(r"\b(?:because|reason:?|for)\s+(.+?)\s*[.!?]?$", re.I)


@dataclass(frozen=True, slots=True)
class ActionProposal:
    """Server-held description of a mutation awaiting confirmation."""

    proposal_id: str
    confirmation_type: ConfirmationType
    confirmation_data: Mapping[str, Any]
    confirmation_message: str
    scope: Scope
    requested_by: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True, slots=True)
class ProposalOutcome:
    proposal: ActionProposal | None = None
    clarification: str | None = None


class _NotResolvable(LookupError):
    pass


# ids are resolved from names, so the model is only ever asked for names
_MODEL_FIELDS = {
    "candidate_id": "candidate_name",
    "employee_id": "employee_name",
    "tool_id": "tool_name",
    "assignment_id": "tool_name",
}


def _full_name(row: Mapping[str, Any]) -> str:
    return f"{row.get('first_name', '')} {row.get('last_name', '')}".strip()


def _match_by_name(rows: list[dict[str, Any]], name: str) -> list[dict[str, Any]]:
    """Full name first, then first name.  Leading words that match nobody are dropped
    (\"Approve Sarah\" finds Sarah)."""
    words = name.strip().lower().split()
    for start in range(len(words)):
        tail = words[start:]
        exact = [r for r in rows if _full_name(r).lower() == " ".join(tail)]
        if exact:
            return exact
        first = [r for r in rows if str(r.get("first_name", "")).lower() == tail[0]]
        if first:
            return first
    return []


def _clean(text: str) -> str:
    return re.sub(r"^(?:the|a|an|my)\s+", "", text.strip(" .,!?'\""), flags=re.I)


def _iso(value: str) -> date | None:
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def parse_day(text: str, today: date) -> date | None:
    m = _ISO_DATE_RE.search(text)
    if m:
        return _iso(m.group(1))
    m = _REL_DATE_RE.search(text)
    if not m:
        return None
    word = m.group(1).lower()
    if word == "today":
        return today
    if word == "tomorrow":
        return today + timedelta(days=1)
    target = _WEEKDAYS.index(word.split()[-1])
    ahead = (target - today.weekday()) % 7 or 7
    return today + timedelta(days=ahead)


def parse_time(text: str) -> str | None:
    m = _TIME_RE.search(text)
    if not m:
        return None
    hour, minute, meridiem = int(m.group(1)), int(m.group(2) or 0), (m.group(3) or "").lower()
    if meridiem == "pm" and hour < 12:
        hour += 12
    if meridiem == "am" and hour == 12:
        hour = 0
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


class IntentProjector:
    """Builds ``ActionProposal`` objects for action intents."""

    def __init__(
        self,
        store: DataStore,
        router: LLMRouter | None = None,
        ttl_seconds: int = 300,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.router = router
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock

    async def propose(self, intent: Intent, message: str, ctx: ConversationContext) -> ProposalOutcome:
        if intent.kind is not IntentKind.ACTION or intent.action is None:
            return ProposalOutcome(clarification="What would you like me to do? For example: \"approve PTO request #123\".")

        action = intent.action
        fields = self._extract(action, message)
        missing = self._missing(action, fields)
        if missing and self.router is not None:
            fields = {**await self._extract_with_model(action, message, missing, private=ctx.is_private), **fields}

        try:
            data, summary = await self._resolve(action, fields, intent.scope, ctx)
        except _NotResolvable as exc:
            logger.info(f"Proposal for {action.value} not built: {exc}")
            return ProposalOutcome(clarification=NOT_FOUND_MESSAGE)

        missing = [f for f in REQUIRED_FIELDS[action] if not data.get(f)]
        if missing:
            return ProposalOutcome(clarification=_ask_for(action, missing))

        now = self.clock()
        proposal = ActionProposal(
            proposal_id=new_id(),
            confirmation_type=action,
            confirmation_data=MappingProxyType(data),
            confirmation_message=summary,
            scope=intent.scope,
            requested_by=ctx.user_id,
            created_at=now,
            expires_at=now + self.ttl,
        )
        logger.info(f"Proposal {proposal.proposal_id} built: {action.value} by {ctx.user_id}")
        return ProposalOutcome(proposal=proposal)

    # ── extraction ──

    def _extract(self, action: ConfirmationType, message: str) -> dict[str, Any]:
        text = message.strip()
        today = self.clock().date()
        out: dict[str, Any] = {}

        if action in (ConfirmationType.APPROVE_PTO, ConfirmationType.DENY_PTO):
            if m := _REQUEST_ID_RE.search(text):
                out["request_id"] = m.group(1)
            elif m := _POSSESSIVE_NAME_RE.search(text):
                out["employee_name"] = m.group(1)
            if action is ConfirmationType.DENY_PTO and (m := re.search(r"\b(?:because|reason:?)\s+(.+?)\s*[.!?]?$", text, re.I)):
                out["reason"] = m.group(1)

        elif action is ConfirmationType.SCHEDULE_INTERVIEW:
            if m := _INTERVIEW_WITH_RE.search(text):
                out["candidate_name"] = m.group(1)
            if day := parse_day(text, today):
                out["date"] = day.isoformat()
            if t := parse_time(text):
                out["time"] = t
            if m := _INTERVIEW_TYPE_RE.search(text):
                kind = m.group(1).upper().replace("-", "_").replace(" ", "_")
                out["type"] = "IN_PERSON" if kind in ("ONSITE", "ON_SITE") else kind

        elif action is ConfirmationType.MOVE_CANDIDATE:
            if m := _MOVE_RE.search(text):
                out["candidate_name"] = _clean(m.group(1))
                status = _STATUS_WORDS.get(m.group(2).lower())
                if status:
                    out["target_status"] = status

        elif action is ConfirmationType.REQUEST_PTO:
            days = [d for d in (_iso(s) for s in _ISO_DATE_RE.findall(text)) if d is not None]
            if not days and (day := parse_day(text, today)):
                days = [day]
            if days:
                out["start_date"] = min(days).isoformat()
                out["end_date"] = max(days).isoformat()
            if m := _REASON_RE.search(text):
                reason = m.group(1)
                if not _ISO_DATE_RE.search(reason) and not _REL_DATE_RE.fullmatch(reason.strip()):
                    out["reason"] = reason

        elif action is ConfirmationType.CREATE_EMPLOYEE:
            if m := _NEW_EMPLOYEE_RE.search(text):
                out["first_name"], out["last_name"] = m.group(1), m.group(2)
            if m := _EMAIL_RE.search(text):
                out["email"] = m.group(0).lower()
            if m := _AS_ROLE_RE.search(text):
                out["role_name"] = m.group(1).strip()
            if m := _IN_DEPT_RE.search(text):
                out["department"] = m.group(1)

        elif action is ConfirmationType.ASSIGN_TOOL:
            if m := _ASSIGN_NAME_FIRST_RE.search(text):
                out["employee_name"], out["tool_name"] = m.group(1), _clean(m.group(2))
            elif m := _ASSIGN_TO_RE.search(text):
                out["tool_name"], out["employee_name"] = _clean(m.group(1)), _clean(m.group(2))

        elif action is ConfirmationType.RETURN_TOOL:
            if m := _RETURN_FROM_RE.search(text):
                out["tool_name"] = _clean(m.group(1))
                if m.group(2):
                    out["employee_name"] = _clean(m.group(2))
                elif re.search(r"\bmy\b", text, re.I):
                    out["employee_self"] = True

        return out

    @staticmethod
    def _missing(action: ConfirmationType, fields: Mapping[str, Any]) -> list[str]:
        # names stand in for ids until resolution
        stand_ins = {
            "candidate_id": "candidate_name",
            "request_id": "employee_name",
            "employee_id": "employee_name",
            "tool_id": "tool_name",
            "assignment_id": "tool_name",
        }
        return [
            f for f in REQUIRED_FIELDS[action]
            if not fields.get(f) and not fields.get(stand_ins.get(f, ""))
        ]

    async def _extract_with_model(
        self, action: ConfirmationType, message: str, missing: list[str], private: bool = False
    ) -> dict[str, Any]:
        wanted = sorted({_MODEL_FIELDS.get(f, f) for f in missing})
        prompt = (
            f"Extract these fields for a '{action.value}' request: {', '.join(wanted)}.\n"
            f"Today is {self.clock().date().isoformat()}. Dates must be YYYY-MM-DD.\n"
            "Use null for anything the message does not state.\n"
            f"Message: {message}"
        )
        task = LLMTaskContext(task_type=TaskType.EXTRACTION, priority=Priority.HIGH, requires_privacy=private)
        try:
            result = await self.router.generate_json(prompt, task, LLMParams(temperature=0.0, max_tokens=300))
        except (ProviderUnavailable, ProviderError) as exc:
            logger.warning(f"Field extraction for {action.value} unavailable: {exc}")
            return {}
        return {k: v for k, v in result.data.items() if k in wanted and isinstance(v, (str, int, float)) and str(v).strip()}

    # ── resolution ──

    async def _find_user(self, name: str) -> dict[str, Any]:
        matches = _match_by_name(await self.store.list(Entity.USERS, is_active=True), name)
        if len(matches) != 1:
            raise _NotResolvable(f"user name matched {len(matches)} rows")
        return matches[0]

    async def _find_candidate(self, name: str) -> dict[str, Any]:
        matches = _match_by_name(await self.store.list(Entity.CANDIDATES), name)
        if len(matches) != 1:
            raise _NotResolvable(f"candidate name matched {len(matches)} rows")
        return matches[0]

    async def _find_tool(self, name: str) -> dict[str, Any]:
        needle = name.strip().lower().rstrip("s")
        rows = await self.store.list(Entity.TOOLS)
        matches = [t for t in rows if str(t.get("name", "")).lower().rstrip("s") == needle]
        if len(matches) != 1:
            raise _NotResolvable(f"tool name matched {len(matches)} rows")
        return matches[0]

    async def _employee_ok(self, ctx: ConversationContext, scope: Scope, employee_id: str | None) -> None:
        if not await employee_in_scope(self.store, ctx.subject_id, ctx.department, scope, employee_id):
            raise _NotResolvable(f"employee {employee_id} outside {scope.value} scope")

    async def _resolve(
        self,
        action: ConfirmationType,
        fields: dict[str, Any],
        scope: Scope,
        ctx: ConversationContext,
    ) -> tuple[dict[str, Any], str]:
        if action in (ConfirmationType.APPROVE_PTO, ConfirmationType.DENY_PTO):
            return await self._resolve_pto_review(action, fields, scope, ctx)
        if action is ConfirmationType.REQUEST_PTO:
            return self._resolve_pto_request(fields)
        if action is ConfirmationType.SCHEDULE_INTERVIEW:
            return await self._resolve_interview(fields, scope, ctx)
        if action is ConfirmationType.MOVE_CANDIDATE:
            return await self._resolve_move(fields, scope, ctx)
        if action is ConfirmationType.CREATE_EMPLOYEE:
            return self._resolve_new_employee(fields)
        if action is ConfirmationType.ASSIGN_TOOL:
            return await self._resolve_assignment(fields, scope, ctx)
        return await self._resolve_return(fields, scope, ctx)

    async def _resolve_pto_review(self, action, fields, scope, ctx):
        request_id = fields.get("request_id")
        if request_id:
            request = await self.store.get(Entity.PTO_REQUESTS, str(request_id))
            if request is None:
                raise _NotResolvable(f"pto request {request_id} not found")
        elif fields.get("employee_name"):
            employee = await self._find_user(str(fields["employee_name"]))
            pending = await self.store.list(Entity.PTO_REQUESTS, employee_id=employee["id"], status="PENDING")
            if len(pending) != 1:
                raise _NotResolvable(f"{len(pending)} pending requests for employee")
            request = pending[0]
        else:
            return {}, ""

        await self._employee_ok(ctx, scope, request.get("employee_id"))
        if request.get("status") != "PENDING":
            raise _NotResolvable(f"pto request {request['id']} is {request.get('status')}")
        employee = await self.store.get(Entity.USERS, request["employee_id"]) or {}
        who = _full_name(employee) or "the employee"
        span = f"{request.get('start_date')} to {request.get('end_date')}"

        data: dict[str, Any] = {"request_id": str(request["id"])}
        if action is ConfirmationType.APPROVE_PTO:
            return data, f"Approve PTO request #{request['id']} for {who} ({span})?"
        if fields.get("reason"):
            data["reason"] = str(fields["reason"])
        return data, f"Deny PTO request #{request['id']} for {who} ({span})?"

    def _resolve_pto_request(self, fields):
        start, end = fields.get("start_date"), fields.get("end_date")
        if not start or not end:
            return {}, ""
        try:
            start_day, end_day = date.fromisoformat(str(start)), date.fromisoformat(str(end))
        except ValueError:
            return {}, ""
        if end_day < start_day:
            start_day, end_day = end_day, start_day
        data: dict[str, Any] = {"start_date": start_day.isoformat(), "end_date": end_day.isoformat()}
        if fields.get("reason"):
            data["reason"] = str(fields["reason"])
        days = (end_day - start_day).days + 1
        return data, f"Request {days} day(s) of PTO from {data['start_date']} to {data['end_date']}?"

    async def _resolve_interview(self, fields, scope, ctx):
        if not fields.get("candidate_name") and not fields.get("candidate_id"):
            return {}, ""
        candidate = (
            await self.store.get(Entity.CANDIDATES, str(fields["candidate_id"]))
            if fields.get("candidate_id") else await self._find_candidate(str(fields["candidate_name"]))
        )
        if candidate is None or not candidate_in_scope(ctx.user_id, scope, candidate):
            raise _NotResolvable("candidate not found or out of scope")
        data: dict[str, Any] = {"candidate_id": candidate["id"]}
        for key in ("date", "time", "type"):
            if fields.get(key):
                data[key] = str(fields[key])
        when = f"{data.get('date', 'a date to be set')} at {data.get('time', '10:00')}"
        kind = data.get("type", "VIDEO").replace("_", " ").lower()
        return data, f"Schedule a {kind} interview with {_full_name(candidate)} on {when}?"

    async def _resolve_move(self, fields, scope, ctx):
        if not fields.get("candidate_name") and not fields.get("candidate_id"):
            return {}, ""
        candidate = (
            await self.store.get(Entity.CANDIDATES, str(fields["candidate_id"]))
            if fields.get("candidate_id") else await self._find_candidate(str(fields["candidate_name"]))
        )
        if candidate is None or not candidate_in_scope(ctx.user_id, scope, candidate):
            raise _NotResolvable("candidate not found or out of scope")
        target = str(fields.get("target_status") or "").upper()
        target = _STATUS_WORDS.get(target.lower(), target)
        data: dict[str, Any] = {"candidate_id": candidate["id"]}
        if target in STAGE_LABELS:
            data["target_status"] = target
        label = STAGE_LABELS.get(target, target.title() or "?")
        return data, f"Move {_full_name(candidate)} from {candidate.get('stage') or candidate.get('status')} to {label}?"

    def _resolve_new_employee(self, fields):
        data: dict[str, Any] = {k: str(fields[k]).strip() for k in ("first_name", "last_name", "email") if fields.get(k)}
        if fields.get("department"):
            data["department"] = str(fields["department"])
        role_name = str(fields.get("role_name") or fields.get("role") or "")
        role = canonical_role(role_name.replace(" ", "_")) if role_name else None
        data["role"] = (role or Role.EMPLOYEE).value
        name = f"{data.get('first_name', '?')} {data.get('last_name', '?')}"
        dept = f" in {data['department']}" if "department" in data else ""
        return data, f"Create employee {name} <{data.get('email', '?')}> as {data['role']}{dept}?"

    async def _resolve_assignment(self, fields, scope, ctx):
        if not fields.get("tool_name") or not fields.get("employee_name"):
            return {}, ""
        tool = await self._find_tool(str(fields["tool_name"]))
        employee = await self._find_user(str(fields["employee_name"]))
        await self._employee_ok(ctx, scope, employee["id"])
        data = {"tool_id": tool["id"], "employee_id": employee["id"]}
        return data, f"Assign one {tool['name']} to {_full_name(employee)}? ({tool.get('available_quantity', 0)} available)"

    async def _resolve_return(self, fields, scope, ctx):
        if not fields.get("tool_name"):
            return {}, ""
        tool = await self._find_tool(str(fields["tool_name"]))
        if fields.get("employee_name"):
            employee = await self._find_user(str(fields["employee_name"]))
        elif fields.get("employee_self"):
            employee = await self.store.get(Entity.USERS, ctx.subject_id) or {"id": ctx.subject_id}
        else:
            return {}, ""
        await self._employee_ok(ctx, scope, employee["id"])
        open_rows = await self.store.list(
            Entity.TOOL_ASSIGNMENTS, tool_id=tool["id"], employee_id=employee["id"], status="ASSIGNED"
        )
        if not open_rows:
            raise _NotResolvable("no open assignment")
        assignment = sorted(open_rows, key=lambda r: str(r.get("assigned_at")))[0]
        data = {"assignment_id": assignment["id"]}
        return data, f"Mark the {tool['name']} assigned to {_full_name(employee) or 'you'} as returned?"


_FIELD_PROMPTS = {
    "candidate_id": "which candidate",
    "date": "the interview date",
    "target_status": "the stage to move them to (screening, interview, offer, hired or rejected)",
    "request_id": "the PTO request number",
    "start_date": "the first day off",
    "end_date": "the last day off",
    "first_name": "the employee's full name",
    "last_name": "the employee's full name",
    "email": "their email address",
    "tool_id": "which tool",
    "employee_id": "who should receive it",
    "assignment_id": "which tool is being returned and by whom",
}


def _ask_for(action: ConfirmationType, missing: list[str]) -> str:
    parts = list(dict.fromkeys(_FIELD_PROMPTS.get(f, f.replace("_", " ")) for f in missing))
    return f"To {action.value.replace('_', ' ')}, I still need {' and '.join(parts)}."
