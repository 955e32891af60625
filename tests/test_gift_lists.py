import pytest

from giftdraw.errors import BadRequest, NotFound
from giftdraw.forms import validate_gift_items
from giftdraw.models import GiftPriority
from giftdraw.services.gift_lists import (
    get_gift_list,
    participants_without_gift_items,
    replace_gift_list,
    set_item_purchased,
)


def test_replace_keeps_order_and_defaults(make_participant):
    p = make_participant(gift_items=["Old thing"])

    saved = replace_gift_list(p.id, [
        {"name": "Book", "priority": GiftPriority.HIGH},
        {"name": "Tea", "url": "https://example.com/tea"},
    ])

    assert [i.name for i in saved] == ["Book", "Tea"]
    assert saved[1].priority == GiftPriority.MEDIUM
    assert [i.name for i in get_gift_list(p.id)] == ["Book", "Tea"]


def test_invalid_priority_leaves_list_untouched(make_participant):
    p = make_participant(gift_items=["Keep me"])

    with pytest.raises(BadRequest):
        replace_gift_list(p.id, [{"name": "Thing", "priority": "urgent"}])

    assert [i.name for i in get_gift_list(p.id)] == ["Keep me"]


def test_list_size_is_capped(app, make_participant):
    app.config["GIFT_LIST_MAX_ITEMS"] = 2
    p = make_participant()
    with pytest.raises(BadRequest):
        replace_gift_list(p.id, [{"name": str(i)} for i in range(3)])


def test_mark_purchased(make_participant):
    p = make_participant(gift_items=["Scarf"])
    item = get_gift_list(p.id)[0]

    assert set_item_purchased(p.id, item.id, True).purchased is True


def test_cannot_touch_someone_elses_item(make_participant):
    owner = make_participant(gift_items=["Scarf"])
    other = make_participant()
    item = get_gift_list(owner.id)[0]

    with pytest.raises(NotFound):
        set_item_purchased(other.id, item.id, True)


def test_participants_without_items(make_participant):
    a = make_participant(gift_items=["Book"])
    b = make_participant()
    assert participants_without_gift_items([a.id, b.id]) == [b.id]


def test_validate_gift_items(app):
    with app.test_request_context():
        items = validate_gift_items([{"name": " Lego ", "url": "https://example.com/lego"}])
        assert items == [{
            "name": "Lego",
            "url": "https://example.com/lego",
            "notes": None,
            "priority": GiftPriority.MEDIUM,
            "purchased": False,
        }]

        with pytest.raises(BadRequest) as exc:
            validate_gift_items([{"name": "ok"}, {"url": "not a url"}, "nope"])
        assert set(exc.value.details) == {"1", "2"}

        with pytest.raises(BadRequest):
            validate_gift_items({"name": "not a list"})
