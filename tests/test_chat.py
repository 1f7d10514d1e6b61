"""Per-order chat between a customer and the assigned driver."""

import pytest
import pytest_asyncio

from carryon.domain.enums import ActorRole
from carryon.domain.errors import NotFound, Unauthorized, ValidationError
from carryon.realtime import events
from carryon.realtime.rooms import chat_room
from carryon.services.chat import MAX_MESSAGE_LENGTH
from tests.conftest import FakeConnection, make_draft


@pytest_asyncio.fixture
async def assigned_order(world, orders, matcher):
    order = (await orders.create_order(world.customer, make_draft())).value
    result = await matcher.try_claim(order.id, world.bikers[0].id)
    assert result.won
    return result.order


class TestSend:
    @pytest.mark.asyncio
    async def test_both_parties_can_talk(self, world, chat, assigned_order):
        first = await chat.send(world.customer, assigned_order.id, "  Gate 2 please ")
        second = await chat.send(world.bikers[0], assigned_order.id, "On my way")

        assert first.value.body == "Gate 2 please"
        assert first.value.sender_role is ActorRole.CUSTOMER
        assert second.value.sender_role is ActorRole.DRIVER

        history = (await chat.history(world.customer, assigned_order.id)).value
        assert [m.body for m in history] == ["Gate 2 please", "On my way"]

    @pytest.mark.asyncio
    async def test_fans_out_to_chat_room(self, world, chat, hub, assigned_order):
        conn = FakeConnection("d")
        await hub.connect(conn, world.bikers[0])
        hub.join("d", chat_room(assigned_order.id))

        await chat.send(world.customer, assigned_order.id, "Hello")

        [payload] = conn.events(events.NEW_MESSAGE)
        assert payload["message"]["body"] == "Hello"
        assert payload["message"]["senderRole"] == "customer"
        assert payload["message"]["orderId"] == assigned_order.id

    @pytest.mark.asyncio
    async def test_outsiders_are_rejected(self, world, chat, assigned_order):
        for actor in (world.other_customer, world.bikers[1]):
            outcome = await chat.send(actor, assigned_order.id, "hi")
            assert isinstance(outcome.error, Unauthorized)
        assert isinstance(
            (await chat.history(world.other_customer, assigned_order.id)).error, Unauthorized
        )

    @pytest.mark.asyncio
    async def test_message_bounds(self, world, chat, assigned_order):
        assert isinstance(
            (await chat.send(world.customer, assigned_order.id, "   ")).error, ValidationError
        )
        too_long = "x" * (MAX_MESSAGE_LENGTH + 1)
        assert isinstance(
            (await chat.send(world.customer, assigned_order.id, too_long)).error, ValidationError
        )

    @pytest.mark.asyncio
    async def test_missing_order(self, world, chat):
        assert isinstance((await chat.send(world.customer, 4242, "hi")).error, NotFound)


class TestMarkRead:
    @pytest.mark.asyncio
    async def test_marks_only_the_other_partys_messages(self, world, chat, assigned_order):
        await chat.send(world.customer, assigned_order.id, "one")
        await chat.send(world.bikers[0], assigned_order.id, "two")
        await chat.send(world.bikers[0], assigned_order.id, "three")

        assert (await chat.mark_read(world.customer, assigned_order.id)).value == 2
        assert (await chat.mark_read(world.customer, assigned_order.id)).value == 0

        history = (await chat.history(world.bikers[0], assigned_order.id)).value
        assert [(m.body, m.is_read) for m in history] == [
            ("one", False),
            ("two", True),
            ("three", True),
        ]
