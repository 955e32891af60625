from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..errors import BadRequest
from ..forms import PurchasedForm, validate_gift_items
from ..policies import ParticipantRequiredMixin, current_participant
from ..services.gift_lists import get_gift_list, replace_gift_list, set_item_purchased


gift_lists_bp = Blueprint("gift_lists", __name__, url_prefix="/gift-list")


class GiftListView(ParticipantRequiredMixin):
    def get(self):
        items = get_gift_list(current_participant().id)
        return jsonify({"items": [i.to_dict() for i in items]})

    def put(self):
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise BadRequest("Send a JSON object with an `items` list.")
        items = validate_gift_items(payload.get("items"))
        saved = replace_gift_list(current_participant().id, items)
        return jsonify({"items": [i.to_dict() for i in saved]})


class GiftItemView(ParticipantRequiredMixin):
    def patch(self, item_id: int):
        form = PurchasedForm()
        form.validate_or_raise()
        item = set_item_purchased(current_participant().id, item_id, bool(form.purchased.data))
        return jsonify(item.to_dict())


gift_lists_bp.add_url_rule("", view_func=GiftListView.as_view("gift_list"), methods=["GET", "PUT"])
gift_lists_bp.add_url_rule(
    "/items/<int:item_id>", view_func=GiftItemView.as_view("gift_item"), methods=["PATCH"]
)
