import io

from langchain_core.language_models.fake_chat_models import FakeListChatModel

from nutribot.agent.fallback import ExtractiveChatModel
from nutribot.agent.model import LangChainChatModel
from nutribot.app import build_application
from nutribot.cli import run_loop
from nutribot.config import AppConfig, ChunkingConfig
from nutribot.ingest.embedder import HashingEmbedder
from nutribot.types import ChatRequest, ModelReply, ToolCall

PAGE_ONE = (
    "Traditional cuisines rely on fermented vegetables and slow-cooked bone broth. "
    "Sprouted grains are easier to digest than refined flour. "
    "Organ meats were once a staple of every culture."
)
PAGE_TWO = (
    "The skin makes vitamin D when it is exposed to sunlight. "
    "Without enough vitamin D the body cannot absorb calcium properly. "
    "Fish liver oils are a traditional source of vitamin D."
)


class RecordingModel:
    def __init__(self, inner) -> None:
        self.inner = inner
        self.requests: list[ChatRequest] = []

    def complete(self, request: ChatRequest) -> ModelReply:
        self.requests.append(request)
        return self.inner.complete(request)


class SearchThenAnswer:
    def complete(self, request: ChatRequest) -> ModelReply:
        if not request.exchanges:
            return ModelReply(
                tool_calls=(ToolCall(call_id="s1", name="search_document", arguments={"query": "calcium"}),)
            )
        return ModelReply(text=f"From the book: {request.exchanges[-1].content}")


def _config(tmp_path) -> AppConfig:
    book = tmp_path / "deep-nutrition.txt"
    book.write_text(PAGE_ONE + "\f" + PAGE_TWO, encoding="utf-8")
    return AppConfig(document_path=book, chunking=ChunkingConfig(max_tokens=40, min_chunk_chars=20))


def test_vitamin_d_question_end_to_end(tmp_path) -> None:
    config = _config(tmp_path)
    model = RecordingModel(ExtractiveChatModel())
    application = build_application(config, chat_model=model, embedder=HashingEmbedder())
    out = io.StringIO()

    try:
        code = run_loop(
            application.agent,
            io.StringIO("What does the book say about vitamin D?\n"),
            out,
            banner=config.banner,
        )
    finally:
        application.close()

    assert code == 0
    (request,) = model.requests
    assert any("vitamin D" in hit.segment.text for hit in request.context)
    answer_line = next(line for line in out.getvalue().splitlines() if line.startswith("ASSISTANT: "))
    assert answer_line.removeprefix("ASSISTANT: ").strip()
    assert {segment.metadata["page_number"] for segment in application.segments} == {1, 2}


def test_builtin_search_tool_round_trip(tmp_path) -> None:
    config = _config(tmp_path)
    application = build_application(config, chat_model=SearchThenAnswer(), embedder=HashingEmbedder())

    try:
        reply = application.agent.respond("Why does calcium matter?")
    finally:
        application.close()

    assert [tool.name for tool in application.tool_registry.descriptors()] == [
        "search_document",
        "summarize_text",
    ]
    assert reply.hops == 1
    assert reply.text.startswith("From the book: [deep-nutrition-chunk-")
    assert "calcium" in reply.text


def test_loop_survives_model_without_tool_support(tmp_path) -> None:
    config = _config(tmp_path)
    model = LangChainChatModel(FakeListChatModel(responses=["hello"]))
    application = build_application(config, chat_model=model, embedder=HashingEmbedder())
    out = io.StringIO()

    try:
        code = run_loop(application.agent, io.StringIO("vitamin D?\nagain\n"), out)
    finally:
        application.close()

    assert code == 0
    assert out.getvalue().count("could not reach the language model") == 2
    assert [turn.content for turn in application.agent.memory.window()] == ["vitamin D?", "again"]
