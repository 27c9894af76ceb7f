import pytest

import main
from tests.conftest import RecordingNotifier


def test_parser_subcommands():
    parser = main.build_parser()

    args = parser.parse_args(["feedback", "42", "save", "--implicit", "--source", "dashboard"])
    assert (args.command, args.story_id, args.action, args.implicit, args.source) == (
        "feedback", "42", "SAVE", True, "dashboard",
    )
    assert parser.parse_args(["crawl", "https://example.com", "--allow", "example.com"]).allow == ["example.com"]

    with pytest.raises(SystemExit):
        parser.parse_args(["feedback", "42", "LOVE"])


def test_fatal_error_notifies_and_exits_1(monkeypatch):
    notifier = RecordingNotifier()

    def broken_schema():
        raise RuntimeError("database locked")

    monkeypatch.setattr(main, "init_schema", broken_schema)
    monkeypatch.setattr(main, "create_notifier", lambda: notifier)

    assert main.main(["top"]) == 1
    assert "database locked" in notifier.sent[0][1]


def test_top_command(monkeypatch):
    shown = []
    monkeypatch.setattr(main, "init_schema", lambda: None)
    monkeypatch.setattr(main, "check_connection", lambda: True)
    monkeypatch.setattr(main, "run_top", lambda limit: shown.append(limit))

    assert main.main(["top", "--limit", "3"]) == 0
    assert shown == [3]
