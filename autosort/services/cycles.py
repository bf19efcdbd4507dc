"""
Cycle Diagnosis & Resolution
==============================

Turns the engine's "cyclic interaction" failure into something a user
can act on:

  Detected → rendered + proposals built → user picks proposals → applied → re-sort
                                        ↘ user closes the dialog (nothing happens)

Proposals are plain values (``Proposal``) with a stable string key so they
survive being round-tripped through a dialog checkbox list. Keys are built
from item names, never group names: item names are file names and can't
contain the ``:`` separator.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from autosort.core.exceptions import EngineError, InvalidProposalError
from autosort.core.host import RuleStore
from autosort.core.types import (
    USER_EDGE_TYPES,
    CycleEdge,
    EdgeType,
    EffectiveGroup,
    RuleKind,
    same_item,
)
from autosort.infra.engine import EngineHandle
from autosort.infra.telemetry import MetricsCollector, get_logger, get_metrics
from autosort.services.notifications import (
    DialogCheckbox,
    DialogRequest,
    Notification,
    NotificationAction,
    NotificationCenter,
    NotificationType,
)

logger = get_logger(__name__)

CYCLE_NOTIFICATION_ID = "autosort-cycle-warning"
INVALID_FIX_ID = "autosort-cycle-invalid-fix"
ACTION_CLOSE = "Close"
ACTION_APPLY = "Apply Selected"
SEPARATOR = ":"

CYCLE_INTRO = (
    "The sorting engine reported a cyclic interaction between rules.<br />"
    "In the simplest case this is something like "
    '[i]"A needs to load after B"[/i] and [i]"B needs to load after A"[/i] '
    "but it can be more complicated, involving multiple plugins and groups and "
    "[i]their[/i] order.<br />"
)

SortTrigger = Callable[[], Awaitable[Any]]


# ── Proposals ──────────────────────────────────────────────────────

class ProposalKind(StrEnum):
    REMOVE_RULE = "removerule"
    UNASSIGN = "unassign"
    RESET_GROUPS = "resetgroups"


def _check_name(name: str) -> str:
    if not name or SEPARATOR in name:
        raise InvalidProposalError(f"Item name can't be used in a proposal: {name!r}")
    return name


@dataclass(frozen=True)
class Proposal:
    """
    One corrective action.

    REMOVE_RULE:  ``first`` must load before ``second`` because of a user
                  rule of type ``edge_type`` (stored on ``second``)
    UNASSIGN:     clear the user group assignment of ``first``
    RESET_GROUPS: drop user group rules on the path between the groups of
                  ``first`` and ``second``
    """

    kind: ProposalKind
    first: str
    second: str | None = None
    edge_type: EdgeType | None = None

    def __post_init__(self) -> None:
        _check_name(self.first)
        if self.kind == ProposalKind.UNASSIGN:
            if self.second is not None or self.edge_type is not None:
                raise InvalidProposalError("unassign takes a single item")
            return
        _check_name(self.second or "")
        if self.kind == ProposalKind.REMOVE_RULE:
            if self.edge_type not in USER_EDGE_TYPES:
                raise InvalidProposalError(f"Not a user rule: {self.edge_type}")
        elif self.edge_type is not None:
            raise InvalidProposalError("resetgroups doesn't take an edge type")

    @classmethod
    def remove_rule(cls, first: str, second: str, edge_type: EdgeType) -> Proposal:
        return cls(ProposalKind.REMOVE_RULE, first, second, EdgeType(edge_type))

    @classmethod
    def unassign(cls, item: str) -> Proposal:
        return cls(ProposalKind.UNASSIGN, item)

    @classmethod
    def reset_groups(cls, first: str, second: str) -> Proposal:
        return cls(ProposalKind.RESET_GROUPS, first, second)

    @property
    def key(self) -> str:
        parts = [self.kind.value, self.first]
        if self.second is not None:
            parts.append(self.second)
        if self.edge_type is not None:
            parts.append(self.edge_type.value)
        return SEPARATOR.join(parts)

    @property
    def sort_key(self) -> tuple[int, str]:
        """Group resets first, then lexicographic by key."""
        return (0 if self.kind == ProposalKind.RESET_GROUPS else 1, self.key)

    @classmethod
    def parse(cls, key: str) -> Proposal:
        args = key.split(SEPARATOR)
        try:
            kind = ProposalKind(args[0])
        except ValueError as e:
            raise InvalidProposalError(f"Unknown fix instruction: {key}") from e
        try:
            if kind == ProposalKind.REMOVE_RULE and len(args) == 4:
                return cls.remove_rule(args[1], args[2], EdgeType(args[3]))
            if kind == ProposalKind.UNASSIGN and len(args) == 2:
                return cls.unassign(args[1])
            if kind == ProposalKind.RESET_GROUPS and len(args) == 3:
                return cls.reset_groups(args[1], args[2])
        except ValueError as e:
            raise InvalidProposalError(f"Malformed fix instruction: {key}") from e
        raise InvalidProposalError(f"Malformed fix instruction: {key}")


@dataclass(frozen=True)
class ProposalOption:
    proposal: Proposal
    text: str


def order_for_apply(proposals: Iterable[Proposal]) -> list[Proposal]:
    """
    Resets run before anything else: removing rules or overrides first can
    change which groups are connected and invalidate the reset path.
    """
    unique = {p.key: p for p in proposals}
    return sorted(unique.values(), key=lambda p: p.sort_key)


# ── Edge labels ────────────────────────────────────────────────────

_EDGE_LABELS: dict[str, str] = {
    EdgeType.MASTERLIST_LOAD_AFTER: "masterlist",
    EdgeType.MASTERLIST_REQUIREMENT: "masterlist",
    EdgeType.USER_LOAD_AFTER: "custom",
    EdgeType.USER_REQUIREMENT: "custom",
    EdgeType.HARDCODED: "hardcoded",
    EdgeType.OVERLAP: "overlap",
    EdgeType.TIE_BREAK: "tie breaker",
}

# Justifications that don't depend on the items involved
_EDGE_REASONS: dict[str, str] = {
    EdgeType.MASTERLIST_LOAD_AFTER: "this is a masterlist rule",
    EdgeType.MASTERLIST_REQUIREMENT: "this is a masterlist rule",
    EdgeType.USER_LOAD_AFTER: "this is a custom rule",
    EdgeType.USER_REQUIREMENT: "this is a custom rule",
    EdgeType.HARDCODED: "hardcoded",
    EdgeType.OVERLAP: "overlap",
    EdgeType.TIE_BREAK: "tie breaker",
}


def edge_label(edge_type: EdgeType | str) -> str:
    """Short label for an edge inside a group path."""
    return _EDGE_LABELS.get(edge_type, "???")


def render_group_path(path: list[CycleEdge]) -> str:
    parts = []
    for edge in path:
        if edge.edge_type == EdgeType.HARDCODED:
            parts.append(edge.name)
        else:
            parts.append(f"{edge.name} --({edge_label(edge.edge_type)})->")
    return " ".join(parts)


# ── Resolver ───────────────────────────────────────────────────────

class CycleResolver:
    """
    Renders cycles, builds proposals and applies the selected ones.

    ``trigger_sort`` is awaited after at least one fix was applied.
    """

    def __init__(
        self,
        rules: RuleStore,
        notifications: NotificationCenter,
        trigger_sort: SortTrigger,
        *,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._rules = rules
        self._notifications = notifications
        self._trigger_sort = trigger_sort
        self._metrics = metrics or get_metrics()

    # ── Group resolution ───────────────────────────────────────────

    def effective_group(self, item: str) -> EffectiveGroup:
        """User override, else masterlist default, else no group."""
        for entry in self._rules.userlist_plugins():
            if same_item(entry.name, item) and entry.group is not None:
                return EffectiveGroup(entry.group, custom=True)
        for entry in self._rules.masterlist_plugins():
            if same_item(entry.name, item) and entry.group is not None:
                return EffectiveGroup(entry.group, custom=False)
        return EffectiveGroup()

    async def group_path(self, engine: EngineHandle, first: str, second: str) -> list[CycleEdge]:
        return await engine.get_groups_path(
            self.effective_group(first).name,
            self.effective_group(second).name,
        )

    # ── Rendering ──────────────────────────────────────────────────

    async def describe_edge(self, engine: EngineHandle, edge: CycleEdge, next_edge: CycleEdge) -> str:
        if edge.edge_type in (EdgeType.MASTER, EdgeType.MASTER_FLAG):
            return f"{next_edge.name} is a master and {edge.name} isn't"
        if edge.edge_type in _EDGE_REASONS:
            return _EDGE_REASONS[edge.edge_type]
        if edge.edge_type != EdgeType.GROUP:
            return str(edge.edge_type)

        try:
            path = await self.group_path(engine, edge.name, next_edge.name)
        except EngineError as e:
            logger.warning("group_path_failed", item=edge.name, error=str(e))
            return "groups are connected in a way that couldn't be determined"
        return f"groups are connected like this: {render_group_path(path)}"

    async def render_cycle(self, engine: EngineHandle, cycle: list[CycleEdge]) -> str:
        lines = []
        for idx, edge in enumerate(cycle):
            next_edge = cycle[(idx + 1) % len(cycle)]
            group = self.effective_group(edge.name)
            if group.custom:
                group_text = f'[tooltip="This group was manually assigned"]{group.name}[/tooltip]'
            else:
                group_text = group.name
            description = await self.describe_edge(engine, edge, next_edge)
            lines.append(f'{edge.name}@[i]{group_text}[/i] [tooltip="{description}"]-->[/tooltip]')
        first = cycle[0]
        lines.append(f"{first.name}@[i]{self.effective_group(first.name).name}[/i]")
        return " ".join(lines)

    # ── Proposals ──────────────────────────────────────────────────

    async def build_proposals(self, engine: EngineHandle, cycle: list[CycleEdge]) -> list[ProposalOption]:
        options: dict[str, ProposalOption] = {}

        def add(proposal: Proposal, text: str) -> None:
            options.setdefault(proposal.key, ProposalOption(proposal, text))

        for idx, edge in enumerate(cycle):
            next_edge = cycle[(idx + 1) % len(cycle)]
            try:
                if edge.is_user_edge:
                    add(
                        Proposal.remove_rule(edge.name, next_edge.name, edge.edge_type),
                        f'Remove custom rule between "{edge.name}" and "{next_edge.name}"',
                    )
                elif edge.edge_type == EdgeType.GROUP:
                    await self._group_proposals(engine, edge, next_edge, add)
            except InvalidProposalError as e:
                logger.warning("proposal_skipped", item=edge.name, error=str(e))
        return list(options.values())

    async def _group_proposals(
        self,
        engine: EngineHandle,
        edge: CycleEdge,
        next_edge: CycleEdge,
        add: Callable[[Proposal, str], None],
    ) -> None:
        edge_group = self.effective_group(edge.name)
        next_group = self.effective_group(next_edge.name)
        for item, group in ((edge.name, edge_group), (next_edge.name, next_group)):
            if group.custom:
                add(Proposal.unassign(item), f'Remove custom group assignment to "{item}"')

        try:
            path = await engine.get_groups_path(edge_group.name, next_group.name)
        except EngineError as e:
            logger.warning("group_path_failed", item=edge.name, error=str(e))
            return
        if any(step.is_user_edge for step in path):
            add(
                Proposal.reset_groups(edge.name, next_edge.name),
                f'Reset customized groups between "{edge.name}@{edge_group.name}" '
                f'and "{next_edge.name}@{next_group.name}"',
            )

    # ── Applying ───────────────────────────────────────────────────

    async def apply_fix(self, engine: EngineHandle, proposal: Proposal) -> None:
        if proposal.kind == ProposalKind.REMOVE_RULE:
            kind = RuleKind.REQUIRES if proposal.edge_type == EdgeType.USER_REQUIREMENT else RuleKind.AFTER
            self._rules.remove_rule(proposal.second, proposal.first, kind)
        elif proposal.kind == ProposalKind.UNASSIGN:
            self._rules.set_group(proposal.first, None)
        elif proposal.kind == ProposalKind.RESET_GROUPS:
            # path is recomputed, earlier fixes may have changed the groups
            path = await self.group_path(engine, proposal.first, proposal.second)
            for idx, step in enumerate(path):
                if step.is_user_edge:
                    following = path[(idx + 1) % len(path)]
                    self._rules.remove_group_rule(
                        following.name or EffectiveGroup().name,
                        step.name or EffectiveGroup().name,
                    )
        self._metrics.record_fix(proposal.kind.value)
        logger.info("cycle_fix_applied", fix=proposal.key)

    async def apply_selected(self, engine: EngineHandle, keys: Iterable[str]) -> int:
        """Apply the selected proposal keys; re-sorts if anything was applied."""
        proposals = []
        for key in keys:
            try:
                proposals.append(Proposal.parse(key))
            except InvalidProposalError as e:
                self._notifications.show_error(
                    "Invalid fix instruction for cycle, please report this", e,
                    notification_id=INVALID_FIX_ID,
                )

        applied = 0
        for proposal in order_for_apply(proposals):
            try:
                await self.apply_fix(engine, proposal)
            except EngineError as e:
                self._notifications.show_error(
                    "Failed to apply fix", e, notification_id=f"autosort-fix-failed:{proposal.key}",
                )
                continue
            applied += 1

        if applied > 0:
            await self._trigger_sort()
        return applied

    # ── Reporting ──────────────────────────────────────────────────

    async def build_dialog(self, engine: EngineHandle, cycle: list[CycleEdge]) -> DialogRequest:
        options = await self.build_proposals(engine, cycle)
        rendered = await self.render_cycle(engine, cycle)
        actions = [ACTION_CLOSE]
        if options:
            actions.append(ACTION_APPLY)
        return DialogRequest(
            title="Cyclic interaction",
            bbcode=f"{CYCLE_INTRO}<br />{rendered}",
            checkboxes=[DialogCheckbox(id=o.proposal.key, text=o.text) for o in options],
            actions=actions,
        )

    async def resolve(self, engine: EngineHandle, request: DialogRequest) -> int:
        """Show the dialog and apply what the user selected."""
        result = await self._notifications.show_dialog(request)
        if result.action != ACTION_APPLY:
            return 0
        return await self.apply_selected(engine, result.selected())

    async def report(self, engine: EngineHandle, cycle: list[CycleEdge]) -> Notification:
        """Persistent warning with a "More" action leading to the fix dialog."""
        request = await self.build_dialog(engine, cycle)
        self._metrics.record_cycle()
        logger.info(
            "cycle_reported",
            length=len(cycle),
            proposals=len(request.checkboxes),
        )

        async def more(dismiss: Callable[[], None]) -> int:
            return await self.resolve(engine, request)

        return self._notifications.send(
            Notification(
                id=CYCLE_NOTIFICATION_ID,
                type=NotificationType.WARNING,
                message="Plugins not sorted because of cyclic rules",
                detail={"cycle": [edge.name for edge in cycle]},
                actions=[NotificationAction(title="More", action=more)],
            )
        )
