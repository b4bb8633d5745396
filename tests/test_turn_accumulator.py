"""Tests for per-field merge rules of the turn accumulator."""

from turnstream.domain.models.stream_events import (
    CharLocationCitation,
    CitationDelta,
    ContainerIdDelta,
    ContentDelta,
    ImageDelta,
    MetaDelta,
    ReasoningDelta,
    SearchResultCitation,
    ToolEvent,
    ToolEventDelta,
    ToolEventStatus,
    WebSearchCitation,
)
from turnstream.domain.models.turn_state import MessageRole
from turnstream.domain.streaming.turn_accumulator import (
    TurnAccumulator,
    build_final_message,
    merge_tool_event,
    non_overlapping_suffix,
)


def tool(name: str, status: str, call_id=None, result=None) -> ToolEvent:
    return ToolEvent(name=name, status=ToolEventStatus(status), call_id=call_id, result=result)


class TestContentAndReasoning:
    def test_content_appends(self, clock):
        accumulator = TurnAccumulator(clock=clock)

        accumulator.apply(ContentDelta(text="Hello "))
        state = accumulator.apply(ContentDelta(text="World"))

        assert state.content == "Hello World"

    def test_each_apply_returns_a_new_snapshot(self, clock):
        accumulator = TurnAccumulator(clock=clock)

        first = accumulator.apply(ContentDelta(text="a"))
        second = accumulator.apply(ContentDelta(text="b"))

        assert first.content == "a"
        assert second.content == "ab"

    def test_reasoning_resend_is_merged_once(self, clock):
        """A delta that repeats the tail of earlier reasoning adds only new text."""
        accumulator = TurnAccumulator(clock=clock)

        accumulator.apply(ReasoningDelta(text="Let me think"))
        accumulator.apply(ReasoningDelta(text="think about it"))
        state = accumulator.apply(ReasoningDelta(text="it."))

        assert state.reasoning == "Let me think about it."

    def test_fully_repeated_reasoning_adds_nothing(self, clock):
        accumulator = TurnAccumulator(clock=clock)
        accumulator.apply(ReasoningDelta(text="abc"))

        state = accumulator.apply(ReasoningDelta(text="bc"))

        assert state.reasoning == "abc"

    def test_non_overlapping_suffix_prefers_longest_overlap(self):
        assert non_overlapping_suffix("abab", "ababX") == "X"
        assert non_overlapping_suffix("abc", "xyz") == "xyz"
        assert non_overlapping_suffix("", "new") == "new"


class TestThinkingSeconds:
    """Thinking time freezes on the first empty to non-empty content transition."""

    def test_recorded_when_reasoning_precedes_content(self, clock):
        accumulator = TurnAccumulator(clock=clock)
        accumulator.apply(ReasoningDelta(text="hmm"))
        clock.advance(3.7)

        state = accumulator.apply(ContentDelta(text="Answer"))

        assert state.thinking_seconds == 3

    def test_frozen_after_first_transition(self, clock):
        accumulator = TurnAccumulator(clock=clock)
        accumulator.apply(ReasoningDelta(text="hmm"))
        clock.advance(2)
        accumulator.apply(ContentDelta(text="A"))
        clock.advance(10)

        accumulator.apply(ReasoningDelta(text=" more"))
        state = accumulator.apply(ContentDelta(text="B"))

        assert state.thinking_seconds == 2

    def test_not_recorded_without_reasoning(self, clock):
        accumulator = TurnAccumulator(clock=clock)
        clock.advance(5)

        accumulator.apply(ContentDelta(text="A"))
        accumulator.apply(ReasoningDelta(text="late"))
        state = accumulator.apply(ContentDelta(text="B"))

        assert state.thinking_seconds is None

    def test_clock_skew_floors_at_zero(self, clock):
        accumulator = TurnAccumulator(clock=clock)
        accumulator.apply(ReasoningDelta(text="r"))
        clock.advance(-4)

        state = accumulator.apply(ContentDelta(text="x"))

        assert state.thinking_seconds == 0

    def test_empty_content_delta_does_not_trigger(self, clock):
        accumulator = TurnAccumulator(clock=clock)
        accumulator.apply(ReasoningDelta(text="r"))
        accumulator.apply(ContentDelta(text=""))
        clock.advance(4)

        state = accumulator.apply(ContentDelta(text="x"))

        assert state.thinking_seconds == 4


class TestImagesAndCitations:
    def test_duplicate_image_is_ignored(self, clock):
        accumulator = TurnAccumulator(clock=clock)

        accumulator.apply(ImageDelta(url="http://i/1.png"))
        state = accumulator.apply(ImageDelta(url="http://i/1.png"))

        assert [image.url for image in state.images] == ["http://i/1.png"]

    def test_image_set_is_capped_at_first(self, clock):
        accumulator = TurnAccumulator(clock=clock)

        accumulator.apply(ImageDelta(url="http://i/1.png", partial=True))
        state = accumulator.apply(ImageDelta(url="http://i/2.png"))

        assert [image.url for image in state.images] == ["http://i/1.png"]
        assert state.images[0].partial is True

    def test_web_citations_dedup_by_url(self, clock):
        accumulator = TurnAccumulator(clock=clock)

        accumulator.apply(CitationDelta(citation=WebSearchCitation(url="http://a", title="A")))
        state = accumulator.apply(CitationDelta(citation=WebSearchCitation(url="http://a", title="Other")))

        assert len(state.citations) == 1
        assert state.citations[0].title == "A"

    def test_search_result_citations_dedup_by_source(self, clock):
        accumulator = TurnAccumulator(clock=clock)

        accumulator.apply(CitationDelta(citation=SearchResultCitation(source="/memories/a.txt", cited_text="x")))
        accumulator.apply(CitationDelta(citation=SearchResultCitation(source="/memories/a.txt", cited_text="y")))
        state = accumulator.apply(CitationDelta(citation=SearchResultCitation(source="/memories/b.txt")))

        assert [citation.source for citation in state.citations] == ["/memories/a.txt", "/memories/b.txt"]

    def test_document_citations_key_on_index_and_text_prefix(self, clock):
        accumulator = TurnAccumulator(clock=clock)
        shared = "x" * 50

        accumulator.apply(CitationDelta(citation=CharLocationCitation(document_index=0, cited_text=shared + "A")))
        accumulator.apply(CitationDelta(citation=CharLocationCitation(document_index=0, cited_text=shared + "B")))
        state = accumulator.apply(CitationDelta(citation=CharLocationCitation(document_index=1, cited_text=shared)))

        assert len(state.citations) == 2


class TestToolEvents:
    def test_end_replaces_matching_start(self, clock):
        accumulator = TurnAccumulator(clock=clock)

        accumulator.apply(ToolEventDelta(event=tool("calculator", "start")))
        state = accumulator.apply(ToolEventDelta(event=tool("calculator", "end", result="4")))

        assert len(state.tool_events) == 1
        assert state.tool_events[0].status == ToolEventStatus.END
        assert state.tool_events[0].result == "4"

    def test_end_without_start_is_appended(self):
        events = merge_tool_event((), tool("search", "end"))

        assert [event.status for event in events] == [ToolEventStatus.END]

    def test_second_start_of_same_name_is_appended(self):
        events = merge_tool_event((tool("search", "start"),), tool("search", "start"))

        assert len(events) == 2

    def test_call_id_disambiguates_concurrent_calls(self):
        """Completion order differs from request order."""
        events = (tool("search", "start", "a"), tool("search", "start", "b"))

        events = merge_tool_event(events, tool("search", "end", "b", result="B"))
        events = merge_tool_event(events, tool("search", "end", "a", result="A"))

        assert [(event.call_id, event.result) for event in events] == [("a", "A"), ("b", "B")]

    def test_other_names_are_untouched(self):
        events = (tool("calculator", "start"), tool("search", "start"))

        events = merge_tool_event(events, tool("search", "end"))

        assert [(event.name, event.status.value) for event in events] == [
            ("calculator", "start"),
            ("search", "end"),
        ]


class TestOutOfBandFields:
    def test_container_id_never_touches_content(self, clock):
        accumulator = TurnAccumulator(clock=clock)

        state = accumulator.apply(ContainerIdDelta(container_id="ctr_9"))

        assert state.container_id == "ctr_9"
        assert state.content == ""

    def test_meta_is_last_write_wins(self, clock):
        accumulator = TurnAccumulator(clock=clock)

        accumulator.apply(MetaDelta(key="response_id", value="r1"))
        state = accumulator.apply(MetaDelta(key="response_id", value="r2"))

        assert state.response_id == "r2"

    def test_provider_error_is_exposed(self, clock):
        accumulator = TurnAccumulator(clock=clock)

        state = accumulator.apply(MetaDelta(key="error", value="overloaded"))

        assert state.provider_error == "overloaded"


class TestFinalMessage:
    def test_suggestions_are_split_off(self, clock):
        accumulator = TurnAccumulator(clock=clock)
        accumulator.apply_all([
            ReasoningDelta(text="plan"),
            ContentDelta(text="Here you go.\n\nSUGGESTIONS:\n- Tell me more\n- Show an example"),
            ImageDelta(url="http://i/1.png"),
        ])

        message = build_final_message(accumulator.state, message_id="msg_1")

        assert message.id == "msg_1"
        assert message.role == MessageRole.ASSISTANT
        assert message.content == "Here you go."
        assert message.suggestions == ["Tell me more", "Show an example"]
        assert message.reasoning == "plan"
        assert [image.url for image in message.images] == ["http://i/1.png"]

    def test_custom_marker(self, clock):
        accumulator = TurnAccumulator(clock=clock)
        accumulator.apply(ContentDelta(text="Done.\nNEXT:\n* one"))

        message = build_final_message(accumulator.state, marker="NEXT:")

        assert message.content == "Done."
        assert message.suggestions == ["one"]

    def test_empty_reasoning_becomes_none(self, clock):
        accumulator = TurnAccumulator(clock=clock)
        accumulator.apply(ContentDelta(text="plain"))

        message = build_final_message(accumulator.state)

        assert message.reasoning is None
        assert message.suggestions is None
