from __future__ import annotations

from typing import Sequence

from flask import current_app
from sqlalchemy import func, select

from ..errors import BadRequest, NotFound
from ..extensions import db
from ..models import GiftItem, GiftPriority, Participant


def _participant_or_404(participant_id: int) -> Participant:
    participant = db.session.get(Participant, participant_id)
    if participant is None:
        raise NotFound("Participant not found.")
    return participant


def get_gift_list(participant_id: int) -> list[GiftItem]:
    return list(_participant_or_404(participant_id).gift_items)


def replace_gift_list(participant_id: int, items: Sequence[dict]) -> list[GiftItem]:
    """
    Replaces the whole list. Each item is a validated dict with `name` and the
    optional `url`, `notes`, `priority` and `purchased` keys.
    """
    participant = _participant_or_404(participant_id)
    limit = current_app.config["GIFT_LIST_MAX_ITEMS"]
    if len(items) > limit:
        raise BadRequest(f"A gift list can hold at most {limit} items.")

    for item in items:
        if (item.get("priority") or GiftPriority.MEDIUM) not in GiftPriority.ALL:
            raise BadRequest(f"Unknown priority '{item['priority']}'.")

    participant.gift_items.clear()
    db.session.flush()
    for position, item in enumerate(items):
        participant.gift_items.append(
            GiftItem(
                position=position,
                name=item["name"],
                url=item.get("url") or None,
                notes=item.get("notes") or None,
                priority=item.get("priority") or GiftPriority.MEDIUM,
                purchased=bool(item.get("purchased", False)),
            )
        )
    db.session.commit()
    return list(participant.gift_items)


def set_item_purchased(participant_id: int, item_id: int, purchased: bool) -> GiftItem:
    item = db.session.get(GiftItem, item_id)
    if item is None or item.participant_id != participant_id:
        raise NotFound("Gift item not found.")
    item.purchased = purchased
    db.session.commit()
    return item


def count_items_by_participant(participant_ids: Sequence[int]) -> dict[int, int]:
    if not participant_ids:
        return {}
    rows = db.session.execute(
        select(GiftItem.participant_id, func.count(GiftItem.id))
        .where(GiftItem.participant_id.in_(participant_ids))
        .group_by(GiftItem.participant_id)
    )
    return {participant_id: count for participant_id, count in rows}


def participants_without_gift_items(participant_ids: Sequence[int]) -> list[int]:
    counts = count_items_by_participant(participant_ids)
    return [pid for pid in participant_ids if not counts.get(pid)]


def gift_list_snapshot(participant: Participant) -> list[dict]:
    """Plain copies of the items, safe to hand to email rendering."""
    return [item.to_dict() for item in participant.gift_items]
