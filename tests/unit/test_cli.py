import io
from types import SimpleNamespace

from nutribot import cli
from nutribot.errors import ModelProviderError, ToolLoopExceeded


class ScriptedAgent:
    def __init__(self, *outcomes: object) -> None:
        self.outcomes = list(outcomes)
        self.received: list[str] = []

    def respond(self, user_text: str) -> SimpleNamespace:
        self.received.append(user_text)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(text=outcome)


def test_end_of_input_exits_cleanly() -> None:
    out = io.StringIO()

    code = cli.run_loop(ScriptedAgent(), io.StringIO(""), out, banner="I am your assistant.")

    assert code == 0
    assert "I am your assistant." in out.getvalue()
    assert "USER: " in out.getvalue()
    assert "ASSISTANT:" not in out.getvalue()


def test_each_line_is_one_agent_round_including_empty_lines() -> None:
    agent = ScriptedAgent("Eat liver.", "Please ask a question.")
    out = io.StringIO()

    code = cli.run_loop(agent, io.StringIO("what should I eat?\n\n"), out)

    assert code == 0
    assert agent.received == ["what should I eat?", ""]
    assert "ASSISTANT: Eat liver.\n" in out.getvalue()
    assert out.getvalue().count("ASSISTANT: ") == 2


def test_turn_failures_do_not_stop_the_loop() -> None:
    agent = ScriptedAgent(ToolLoopExceeded(6), ModelProviderError("connection reset"), "Still here.")
    out = io.StringIO()

    code = cli.run_loop(agent, io.StringIO("a\nb\nc\n"), out)

    output = out.getvalue()
    assert code == 0
    assert cli.TOOL_LOOP_APOLOGY in output
    assert "could not reach the language model" in output
    assert "ASSISTANT: Still here." in output


def test_main_fails_fast_when_document_is_missing(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NUTRIBOT_DOCUMENT_PATH", str(tmp_path / "missing.pdf"))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)

    assert cli.main() == 1
    assert "Document not found" in capsys.readouterr().err


def test_main_runs_offline_session(tmp_path, monkeypatch, capsys) -> None:
    book = tmp_path / "book.txt"
    book.write_text("Bone broth supplies collagen and minerals.", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NUTRIBOT_DOCUMENT_PATH", str(book))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(cli.sys, "stdin", io.StringIO("Why drink bone broth?\n"))

    assert cli.main() == 0
    output = capsys.readouterr().out
    assert "I am your assistant who is expert in nutrition." in output
    assert "[book-chunk-0000]" in output


def test_main_uses_bundled_book_by_default(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("NUTRIBOT_DOCUMENT_PATH", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("NUTRIBOT_MCP_CONFIG", raising=False)
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(cli.sys, "stdin", io.StringIO("Which vitamins are in liver?\n"))

    assert cli.main() == 0
    captured = capsys.readouterr()
    assert "Document not found" not in captured.err
    assert "[deep_nutrition-chunk-" in captured.out
