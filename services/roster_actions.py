"""
Roster Actions

Post-battle action codes mapped to roster transitions. Called inside the
battle write transaction so roster changes commit or roll back with it.
"""

from datetime import date
from typing import Callable, Iterable

from core.logging import get_logger
from db.models import RosterMember
from utils.constants import ActionCode

log = get_logger("roster_actions")


def _kick(member: RosterMember, today: date) -> bool:
    changed = member.active or member.kicked_date is None
    member.active = False
    if member.kicked_date is None:
        member.kicked_date = today
    return changed


def _reserve(member: RosterMember, today: date) -> bool:
    changed = member.active
    member.active = False
    return changed


def _no_change(member: RosterMember, today: date) -> bool:
    return False


ACTION_HANDLERS: dict[ActionCode, Callable[[RosterMember, date], bool]] = {
    ActionCode.HOLD: _no_change,
    ActionCode.WARN: _no_change,
    ActionCode.PASS: _no_change,
    ActionCode.KICK: _kick,
    ActionCode.RESERVE: _reserve,
}


def apply_action_codes(clan_id: int, entries: Iterable[dict], today: date) -> list[int]:
    """
    Apply each entry's action code to the matching roster member.

    Args:
        clan_id: Owning clan (members of other clans are never touched)
        entries: dicts with 'player_id' and 'action_code'
        today: Date stamped on kicked members

    Returns:
        Ids of roster members that changed
    """
    codes = {e['player_id']: ActionCode(e['action_code']) for e in entries}
    if not codes:
        return []

    members = RosterMember.select().where(
        (RosterMember.clan == clan_id) & (RosterMember.id.in_(list(codes)))
    )

    changed = []
    for member in members:
        code = codes[member.id]
        if ACTION_HANDLERS[code](member, today):
            member.save()
            changed.append(member.id)
            log.info(
                "roster_member_updated",
                player_id=member.id,
                action_code=code.value,
                active=member.active,
            )
    return changed
