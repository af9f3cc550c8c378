"""Tests for the hookrelay command line tool."""

import json
from unittest.mock import AsyncMock, patch

from hookrelay.cli import main
from hookrelay.core.security import generate_signature

SECRET = "cli-test-secret-0123456789"


class TestSignAndVerify:
    def test_sign_file_keeps_exact_bytes(self, tmp_path, capsys):
        payload = '{"event": "comment.created"}\n'
        path = tmp_path / "payload.json"
        path.write_text(payload, encoding="utf-8")

        assert main(["sign", "--secret", SECRET, str(path)]) == 0

        assert capsys.readouterr().out.strip() == generate_signature(payload, SECRET)

    def test_sign_stdin(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", _Stdin("hello"))

        assert main(["sign", "--secret", SECRET]) == 0
        assert capsys.readouterr().out.strip() == generate_signature("hello", SECRET)

    def test_verify_valid_and_invalid(self, tmp_path, capsys):
        path = tmp_path / "payload.json"
        path.write_text("{}", encoding="utf-8")
        good = generate_signature("{}", SECRET)

        assert main(["verify", "--secret", SECRET, "--signature", good, str(path)]) == 0
        assert capsys.readouterr().out.strip() == "valid"

        assert main(["verify", "--secret", SECRET, "--signature", "0" * 64, str(path)]) == 1
        assert capsys.readouterr().out.strip() == "invalid"


class TestMaintenanceCommands:
    def test_cleanup_prints_counts(self, capsys):
        purge = AsyncMock(return_value={"deliveries": 3, "inbound_logs": 1})
        with (
            patch("hookrelay.workers.cleanup_worker.purge_webhook_history", purge),
            patch(
                "hookrelay.core.database.create_worker_session_factory",
                return_value=(object(), AsyncMock()),
            ),
        ):
            assert main(["cleanup", "--delivery-days", "10", "--inbound-days", "20"]) == 0

        assert json.loads(capsys.readouterr().out) == {"deliveries": 3, "inbound_logs": 1}
        assert purge.call_args.kwargs["delivery_retention_days"] == 10
        assert purge.call_args.kwargs["inbound_retention_days"] == 20

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out


class _Stdin:
    def __init__(self, text: str):
        self._text = text

    def read(self) -> str:
        return self._text
