from types import SimpleNamespace

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from pydantic import BaseModel

from nutribot.agent.model import LangChainChatModel, to_messages
from nutribot.agent.registry import LocalToolProvider, ToolSpec
from nutribot.errors import ModelProviderError
from nutribot.types import ChatRequest, ScoredSegment, Segment, ToolCall, Turn


class QueryInput(BaseModel):
    query: str


class FakeLLM:
    def __init__(self, response: object) -> None:
        self.response = response
        self.bound_tools: list[dict] | None = None
        self.received: list | None = None

    def bind_tools(self, tools: list[dict]) -> "FakeLLM":
        self.bound_tools = tools
        return self

    def invoke(self, messages: list) -> object:
        self.received = messages
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _context() -> tuple[ScoredSegment, ...]:
    segment = Segment(
        segment_id="book-chunk-0003",
        doc_id="book",
        text="Sunlight lets the skin make vitamin D.",
        position=3,
        token_count=8,
    )
    return (ScoredSegment(segment=segment, score=0.9, rank=1),)


def _tools():
    spec = ToolSpec(name="search_document", description="search", args_schema=QueryInput, handler=lambda d: d.query)
    return tuple(LocalToolProvider([spec]).list_tools())


def test_request_is_rendered_as_system_history_question() -> None:
    request = ChatRequest(
        system_prompt="be helpful",
        history=(Turn.user("hi"), Turn.assistant("hello")),
        user_text="What about vitamin D?",
        context=_context(),
    )

    messages = to_messages(request)

    assert [type(m) for m in messages] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
    assert messages[0].content == "be helpful"
    assert messages[-1].content.startswith("What about vitamin D?")
    assert "Sunlight lets the skin make vitamin D." in messages[-1].content


def test_leading_orphan_tool_turns_are_dropped() -> None:
    call = ToolCall(call_id="c1", name="search_document", arguments={"query": "x"})
    request = ChatRequest(
        system_prompt="s",
        history=(Turn.tool(call, "result"), Turn.assistant("done"), Turn.user("next"), Turn.assistant("ok")),
        user_text="again",
    )

    messages = to_messages(request)

    assert [type(m) for m in messages] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
    assert messages[-1].content == "again"


def test_exchanges_follow_the_question() -> None:
    call = ToolCall(call_id="c1", name="search_document", arguments={"query": "x"})
    request = ChatRequest(system_prompt="s", history=(), user_text="q").with_exchanges(
        Turn.assistant("", (call,)), Turn.tool(call, "found it")
    )

    messages = to_messages(request)

    assert isinstance(messages[2], AIMessage)
    assert messages[2].tool_calls[0]["id"] == "c1"
    assert messages[2].tool_calls[0]["args"] == {"query": "x"}
    assert isinstance(messages[3], ToolMessage)
    assert messages[3].tool_call_id == "c1"
    assert messages[3].content == "found it"


def test_tool_calls_are_parsed_and_tools_bound() -> None:
    llm = FakeLLM(
        AIMessage(
            content="",
            tool_calls=[{"name": "search_document", "args": {"query": "vitamin D"}, "id": "call_1"}],
        )
    )
    model = LangChainChatModel(llm)

    reply = model.complete(ChatRequest(system_prompt="s", history=(), user_text="q", tools=_tools()))

    assert reply.wants_tools
    assert reply.tool_calls == (ToolCall(call_id="call_1", name="search_document", arguments={"query": "vitamin D"}),)
    assert llm.bound_tools is not None
    assert llm.bound_tools[0]["function"]["name"] == "search_document"


def test_text_reply_without_tools_skips_binding() -> None:
    llm = FakeLLM(AIMessage(content="Eat more organ meats."))

    reply = LangChainChatModel(llm).complete(ChatRequest(system_prompt="s", history=(), user_text="q"))

    assert reply.text == "Eat more organ meats."
    assert not reply.wants_tools
    assert llm.bound_tools is None


def test_list_content_is_flattened() -> None:
    llm = FakeLLM(AIMessage(content=[{"type": "text", "text": "Part one."}, {"type": "text", "text": "Part two."}]))

    reply = LangChainChatModel(llm).complete(ChatRequest(system_prompt="s", history=(), user_text="q"))

    assert reply.text == "Part one. Part two."


def test_provider_failure_becomes_model_provider_error() -> None:
    llm = FakeLLM(TimeoutError("read timed out"))

    with pytest.raises(ModelProviderError) as excinfo:
        LangChainChatModel(llm).complete(ChatRequest(system_prompt="s", history=(), user_text="q"))
    assert isinstance(excinfo.value.__cause__, TimeoutError)


def test_model_without_tool_support_raises_model_provider_error() -> None:
    llm = FakeListChatModel(responses=["hello"])

    with pytest.raises(ModelProviderError) as excinfo:
        LangChainChatModel(llm).complete(ChatRequest(system_prompt="s", history=(), user_text="q", tools=_tools()))
    assert isinstance(excinfo.value.__cause__, NotImplementedError)


def test_model_without_tool_support_still_answers_when_no_tools_are_offered() -> None:
    llm = FakeListChatModel(responses=["Eat fermented vegetables."])

    reply = LangChainChatModel(llm).complete(ChatRequest(system_prompt="s", history=(), user_text="q"))

    assert reply.text == "Eat fermented vegetables."


def test_malformed_tool_call_raises_model_provider_error() -> None:
    bad_message = SimpleNamespace(content="", tool_calls=[{"args": {"query": "x"}, "id": "c1"}])

    with pytest.raises(ModelProviderError):
        LangChainChatModel(FakeLLM(bad_message)).complete(ChatRequest(system_prompt="s", history=(), user_text="q"))
