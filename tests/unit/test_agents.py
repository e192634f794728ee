"""Tests for the editor, planner, booking and enrichment agents."""

import json

import pytest

from backend.app.adapters.places import PlaceResolution
from backend.app.agents.base import AgentRequest, Declined, Failed, NeedsDisambiguation, Proposed
from backend.app.agents.booking import BookingAgent
from backend.app.agents.editor import EditorAgent
from backend.app.agents.enrichment import EnrichmentAgent
from backend.app.agents.planner import PlannerAgent
from backend.app.models.changes import DeleteOp, InsertOp, MoveOp, ReplaceOp, UpdateOp
from backend.app.models.common import Coordinates, ErrorCode, NodeType, TaskType
from backend.app.models.intent import IntentEntities
from backend.app.models.itinerary import Day, Itinerary


def _request(itinerary: Itinerary, task: TaskType, text: str = "", **kwargs) -> AgentRequest:
    entities = IntentEntities(**kwargs.pop("entities", {}))
    return AgentRequest(itinerary=itinerary, text=text, task=task, entities=entities, **kwargs)


class TestEditor:
    @pytest.mark.asyncio
    async def test_move_time_on_selected_node_keeps_day_in_order(
        self, itinerary: Itinerary, make_llm
    ) -> None:
        ticks: list[int] = []

        async def progress(percent: int, message: str) -> None:
            ticks.append(percent)

        request = _request(
            itinerary,
            TaskType.move_time,
            "move lunch to 2pm",
            entities={"reference": "lunch", "time": "14:00"},
            selected_node_id="n_lunch_1",
            progress=progress,
        )

        outcome = await EditorAgent(make_llm()).execute(request)

        assert isinstance(outcome, Proposed)
        update, move = outcome.change_set.ops
        assert isinstance(update, UpdateOp)
        assert update.changes == {"timing": {"startTime": "14:00", "endTime": "15:00"}}
        assert isinstance(move, MoveOp)
        assert (move.to_day, move.to_index) == (1, 2)
        entry = outcome.diff.for_node("n_lunch_1")
        assert entry is not None
        assert entry.after["timing"]["startTime"] == "14:00"  # type: ignore[index]
        assert outcome.diff.for_node("n_lunch_2") is None
        assert outcome.change_set.base_version == 1
        assert outcome.change_set.agent == "editor"
        assert ticks == [30]

    @pytest.mark.asyncio
    async def test_ambiguous_reference_asks_which_one(
        self, itinerary: Itinerary, make_llm
    ) -> None:
        request = _request(
            itinerary, TaskType.move_time, entities={"reference": "lunch", "time": "14:00"}
        )

        outcome = await EditorAgent(make_llm()).execute(request)

        assert isinstance(outcome, NeedsDisambiguation)
        assert [c.id for c in outcome.candidates] == ["n_lunch_1", "n_lunch_2"]
        assert outcome.message.startswith("I found 2 matches for 'lunch'")

    @pytest.mark.asyncio
    async def test_three_identical_titles_all_become_candidates(self, make_node, make_llm) -> None:
        itinerary = Itinerary(
            id="trip_market",
            days=[
                Day(
                    day_number=1,
                    nodes=[
                        make_node(f"n_market_{i}", "Lunch at the market", start, type=NodeType.meal)
                        for i, start in enumerate(["11:00", "12:30", "14:00"], start=1)
                    ],
                )
            ],
        )
        request = _request(
            itinerary,
            TaskType.move_time,
            "move lunch to 2pm",
            entities={"reference": "lunch", "time": "14:00"},
        )

        outcome = await EditorAgent(make_llm()).execute(request)

        assert isinstance(outcome, NeedsDisambiguation)
        assert len(outcome.candidates) == 3
        assert {c.id for c in outcome.candidates} == {"n_market_1", "n_market_2", "n_market_3"}

    @pytest.mark.asyncio
    async def test_exact_title_does_not_hide_similar_node(self, make_node, make_llm) -> None:
        itinerary = Itinerary(
            id="trip_market",
            days=[
                Day(
                    day_number=1,
                    nodes=[
                        make_node("n_lunch", "Lunch", "12:00", "13:00", type=NodeType.meal),
                        make_node("n_market", "Lunch at the market", "15:00", type=NodeType.meal),
                    ],
                )
            ],
        )
        request = _request(
            itinerary,
            TaskType.move_time,
            "move lunch to 2pm",
            entities={"reference": "lunch", "time": "14:00"},
        )

        outcome = await EditorAgent(make_llm()).execute(request)

        assert isinstance(outcome, NeedsDisambiguation)
        assert [c.id for c in outcome.candidates] == ["n_lunch", "n_market"]

    @pytest.mark.asyncio
    async def test_locked_node_is_declined(self, itinerary: Itinerary, make_llm) -> None:
        request = _request(
            itinerary, TaskType.move_time, entities={"reference": "train", "time": "20:00"}
        )

        outcome = await EditorAgent(make_llm()).execute(request)

        assert isinstance(outcome, Declined)
        assert outcome.error_code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_unknown_reference_is_declined(self, itinerary: Itinerary, make_llm) -> None:
        request = _request(itinerary, TaskType.delete_node, entities={"reference": "zoo"})

        outcome = await EditorAgent(make_llm()).execute(request)

        assert isinstance(outcome, Declined)
        assert "'zoo'" in outcome.message
        assert outcome.error_code is None

    @pytest.mark.asyncio
    async def test_delete(self, itinerary: Itinerary, make_llm) -> None:
        request = _request(itinerary, TaskType.delete_node, entities={"reference": "breakfast"})

        outcome = await EditorAgent(make_llm()).execute(request)

        assert isinstance(outcome, Proposed)
        assert isinstance(outcome.change_set.ops[0], DeleteOp)
        assert outcome.diff.refs("removed") == ["n_breakfast"]

    @pytest.mark.asyncio
    async def test_move_node_to_another_day(self, itinerary: Itinerary, make_llm) -> None:
        request = _request(
            itinerary, TaskType.move_node, entities={"reference": "Louvre", "day": 2}
        )

        outcome = await EditorAgent(make_llm()).execute(request)

        assert isinstance(outcome, Proposed)
        (move,) = outcome.change_set.ops
        assert isinstance(move, MoveOp)
        assert (move.to_day, move.to_index) == (2, 1)
        assert outcome.message == "Moved 'Louvre Museum' to day 2."

    @pytest.mark.asyncio
    async def test_move_node_to_missing_day(self, itinerary: Itinerary, make_llm) -> None:
        request = _request(
            itinerary, TaskType.move_node, entities={"reference": "Louvre", "day": 5}
        )

        outcome = await EditorAgent(make_llm()).execute(request)

        assert isinstance(outcome, Declined)
        assert outcome.error_code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_replace_with_named_place_keeps_id(
        self, itinerary: Itinerary, make_llm, make_places
    ) -> None:
        request = _request(
            itinerary,
            TaskType.replace_node,
            entities={"reference": "lunch", "place": "picnic"},
            selected_node_id="n_lunch_2",
        )

        outcome = await EditorAgent(make_llm(), make_places()).execute(request)

        assert isinstance(outcome, Proposed)
        (replace,) = outcome.change_set.ops
        assert isinstance(replace, ReplaceOp)
        assert replace.node is not None
        assert (replace.node.id, replace.node.title) == ("n_lunch_2", "Picnic")
        assert replace.node.timing.start_time == "17:00"
        assert "couldn't look up its address" in outcome.message

    @pytest.mark.asyncio
    async def test_free_form_edit_uses_llm_draft(self, itinerary: Itinerary, make_llm) -> None:
        llm = make_llm(json.dumps({"title": "Long lunch", "end_time": "14:00"}))
        request = _request(
            itinerary,
            TaskType.edit,
            "make it a long lunch until 2pm",
            selected_node_id="n_lunch_1",
        )

        outcome = await EditorAgent(llm).execute(request)

        assert isinstance(outcome, Proposed)
        assert outcome.change_set.ops[0].changes == {  # type: ignore[union-attr]
            "title": "Long lunch",
            "timing": {"endTime": "14:00"},
        }
        assert outcome.message == "Updated 'Lunch' (timing, title)."
        assert "make it a long lunch until 2pm" in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_edit_without_llm_fails_softly(self, itinerary: Itinerary, make_llm) -> None:
        request = _request(itinerary, TaskType.edit, "make it fancier", selected_node_id="n_louvre")

        outcome = await EditorAgent(make_llm()).execute(request)

        assert isinstance(outcome, Failed)
        assert outcome.error_code == ErrorCode.EXTERNAL_SERVICE_FAILURE

    @pytest.mark.asyncio
    async def test_rename_is_deterministic(self, itinerary: Itinerary, make_llm) -> None:
        llm = make_llm()
        request = _request(itinerary, TaskType.edit, "rename the Louvre Museum to Louvre visit")

        outcome = await EditorAgent(llm).execute(request)

        assert isinstance(outcome, Proposed)
        (update,) = outcome.change_set.ops
        assert isinstance(update, UpdateOp)
        assert update.changes == {"title": "Louvre visit"}
        assert llm.prompts == []


class TestPlanner:
    @pytest.mark.asyncio
    async def test_insert_named_place_with_lookup(
        self, itinerary: Itinerary, make_llm, make_places, eiffel: PlaceResolution
    ) -> None:
        places = make_places({"eiffel": eiffel})
        request = _request(
            itinerary,
            TaskType.insert_place,
            "add the Eiffel Tower on day 2 at 3pm",
            entities={"place": "Eiffel Tower", "day": 2, "time": "15:00", "category": "attraction"},
        )

        outcome = await PlannerAgent(make_llm(), places).execute(request)

        assert isinstance(outcome, Proposed)
        (insert,) = outcome.change_set.ops
        assert isinstance(insert, InsertOp)
        assert insert.target.day_number == 2
        assert insert.position == 1
        assert insert.node is not None
        assert insert.node.type == NodeType.attraction
        assert insert.node.timing.end_time == "17:00"
        assert insert.node.location.place_id == "place_eiffel"  # type: ignore[union-attr]
        assert places.queries == ["Eiffel Tower, Paris"]
        assert outcome.message == "Added 'Eiffel Tower' to day 2 at 15:00."
        assert outcome.diff.refs("added") == [insert.node.id]

    @pytest.mark.asyncio
    async def test_insert_without_day_on_multi_day_trip_asks(
        self, itinerary: Itinerary, make_llm
    ) -> None:
        request = _request(itinerary, TaskType.insert_place, entities={"place": "Eiffel Tower"})

        outcome = await PlannerAgent(make_llm()).execute(request)

        assert isinstance(outcome, Declined)
        assert outcome.error_code is None

    @pytest.mark.asyncio
    async def test_insert_on_missing_day(self, itinerary: Itinerary, make_llm) -> None:
        request = _request(
            itinerary, TaskType.insert_place, entities={"place": "Eiffel Tower", "day": 9}
        )

        outcome = await PlannerAgent(make_llm()).execute(request)

        assert isinstance(outcome, Declined)
        assert outcome.error_code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_replan_keeps_locked_nodes(self, itinerary: Itinerary, make_llm) -> None:
        plan = {
            "nodes": [
                {"title": "Seine cruise", "type": "activity", "start_time": "18:00"},
                {"title": "Picnic in the Tuileries", "type": "meal", "start_time": "12:00"},
            ]
        }
        ticks: list[int] = []

        async def progress(percent: int, message: str) -> None:
            ticks.append(percent)

        request = _request(
            itinerary, TaskType.replan_day, "replan day 2", entities={"day": 2}, progress=progress
        )

        outcome = await PlannerAgent(make_llm(json.dumps(plan))).execute(request)

        assert isinstance(outcome, Proposed)
        (replace,) = outcome.change_set.ops
        assert isinstance(replace, ReplaceOp)
        assert [n.title for n in replace.nodes or []] == [
            "Picnic in the Tuileries",
            "Seine cruise",
            "Train to Lyon",
        ]
        assert outcome.message == "Replanned day 2 with 2 new stops, keeping 1 locked."
        assert ticks[0] == 10
        assert ticks[-1] == 90
        assert ticks == sorted(ticks)

    @pytest.mark.asyncio
    async def test_replan_without_llm_fails(self, itinerary: Itinerary, make_llm) -> None:
        request = _request(itinerary, TaskType.replan_day, entities={"day": 1})

        outcome = await PlannerAgent(make_llm()).execute(request)

        assert isinstance(outcome, Failed)


class TestBooking:
    @pytest.mark.asyncio
    async def test_booking_sets_reference_and_locks(self, itinerary: Itinerary) -> None:
        request = _request(itinerary, TaskType.book_node, entities={"reference": "dinner"})

        outcome = await BookingAgent().execute(request)

        assert isinstance(outcome, Proposed)
        (update,) = outcome.change_set.ops
        assert isinstance(update, UpdateOp)
        assert update.changes["bookingRef"].startswith("REQ-")
        assert update.changes["locked"] is True
        assert update.changes["labels"] == ["booked"]
        entry = outcome.diff.for_node("n_bistro")
        assert entry is not None
        assert {"bookingRef", "labels", "locked"} <= set(entry.changed_fields)

    @pytest.mark.asyncio
    async def test_booking_a_locked_node_overrides_the_lock(self, itinerary: Itinerary) -> None:
        request = _request(itinerary, TaskType.book_node, entities={"reference": "train"})

        outcome = await BookingAgent().execute(request)

        assert isinstance(outcome, Proposed)
        assert outcome.change_set.ops[0].override_lock is True

    @pytest.mark.asyncio
    async def test_already_booked_is_declined(self, make_node) -> None:
        itinerary = Itinerary(
            id="trip_1",
            days=[
                Day(day_number=1, nodes=[make_node("n_1", "Opera", "20:00", booking_ref="REQ-1")])
            ],
        )
        request = _request(itinerary, TaskType.book_node, entities={"reference": "opera"})

        outcome = await BookingAgent().execute(request)

        assert isinstance(outcome, Declined)
        assert "REQ-1" in outcome.message

    @pytest.mark.asyncio
    async def test_ambiguous_booking(self, itinerary: Itinerary) -> None:
        request = _request(itinerary, TaskType.book_node, entities={"reference": "lunch"})

        assert isinstance(await BookingAgent().execute(request), NeedsDisambiguation)


class TestEnrichment:
    @pytest.mark.asyncio
    async def test_disabled_lookup_fails(self, itinerary: Itinerary, make_places) -> None:
        agent = EnrichmentAgent(make_places(enabled=False))

        outcome = await agent.execute(_request(itinerary, TaskType.enrich_node))

        assert isinstance(outcome, Failed)

    @pytest.mark.asyncio
    async def test_day_scope_enriches_found_and_skips_missing(
        self, itinerary: Itinerary, make_places
    ) -> None:
        orsay = PlaceResolution(
            place_id="place_orsay",
            name="Musée d'Orsay",
            address="Esplanade Valéry Giscard d'Estaing, 75007 Paris",
            coordinates=Coordinates(lat=48.86, lng=2.3266),
            rating=4.8,
        )
        places = make_places({"orsay": orsay})
        request = _request(itinerary, TaskType.enrich_node, entities={"day": 2})

        outcome = await EnrichmentAgent(places).execute(request)

        assert isinstance(outcome, Proposed)
        assert [op.target.node_id for op in outcome.change_set.ops] == ["n_orsay"]
        assert outcome.message == (
            "Added location details to 1 item. Skipped Dinner at Le Comptoir (not found)."
        )
        # Locked nodes are never looked up
        assert places.queries == ["Musée d'Orsay, Paris", "Dinner at Le Comptoir, Paris"]
        entry = outcome.diff.for_node("n_orsay")
        assert entry is not None
        assert entry.after is not None
        assert entry.after["location"]["coordinates"] == {"lat": 48.86, "lng": 2.3266}
        assert entry.after["details"]["rating"] == 4.8

    @pytest.mark.asyncio
    async def test_nothing_found_is_declined(self, itinerary: Itinerary, make_places) -> None:
        request = _request(itinerary, TaskType.enrich_node, entities={"reference": "Louvre"})

        outcome = await EnrichmentAgent(make_places()).execute(request)

        assert isinstance(outcome, Declined)
        assert "Louvre Museum" in outcome.message
