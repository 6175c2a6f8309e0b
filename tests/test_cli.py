"""Tests for the tls-transport command line."""

import json
import socket

import pytest
import yaml

from conftest import Outcome
from tls_transport.cli import main
from tls_transport.server import ServerController


@pytest.fixture
def write_config(tmp_path):
    """Write a YAML config and return its path as a string."""
    def _write(data) -> str:
        path = tmp_path / "transport.yaml"
        path.write_text(yaml.dump(data))
        return str(path)
    return _write


def _stringify(options: dict) -> dict:
    return {key: str(value) if hasattr(value, "__fspath__") else value for key, value in options.items()}


class TestMain:
    """Tests for subcommand dispatch."""

    def test_no_args_prints_usage(self, capsys):
        assert main([]) == 0
        assert "Usage: tls-transport" in capsys.readouterr().out

    def test_help(self, capsys):
        assert main(["--help"]) == 0
        assert "gen-cert" in capsys.readouterr().out

    def test_unknown_command(self, capsys):
        assert main(["frobnicate"]) == 1
        assert "Unknown command 'frobnicate'" in capsys.readouterr().out


class TestSendCommand:
    """Tests for 'send'."""

    def test_invalid_address(self, monkeypatch):
        monkeypatch.delenv("TLS_TRANSPORT_CONFIG", raising=False)
        assert main(["send", "http://localhost:1/", "hello"]) == 1

    def test_missing_config(self, tmp_path):
        assert main(["send", "-c", str(tmp_path / "nope.yaml"), "tcp://localhost:1/", "x"]) == 1

    def test_delivers_with_config(self, write_config, server_options, client_options, recipient):
        """send reads its TLS options from the config's send section."""
        controller = ServerController(recipient)
        outcome = Outcome()
        controller.listen({**server_options, "host": "127.0.0.1", "ok": outcome.ok, "fail": outcome.fail})
        assert outcome.wait()
        port = controller.server_address[1]

        try:
            config = write_config({"send": _stringify(client_options)})
            address = f"tcp://localhost:{port}/#cli"
            assert main(["send", "--config", config, address, "from the shell"]) == 0

            assert recipient.wait()
            assert recipient.messages[0].address == address
            assert recipient.messages[0].content == "from the shell"
        finally:
            controller.close().join(5)


class TestListenCommand:
    """Tests for 'listen' failure paths."""

    def test_bad_config(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("listen: [1, 2")
        assert main(["listen", "--config", str(path)]) == 1

    def test_port_in_use(self, write_config, server_options):
        config = write_config({"listen": _stringify(server_options)})
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen(1)
            port = blocker.getsockname()[1]

            assert main(["listen", "-c", config, "--host", "127.0.0.1", "--port", str(port)]) == 1


class TestGenCertCommand:
    """Tests for 'gen-cert'."""

    def test_json_output(self, tmp_path, capsys):
        code = main([
            "gen-cert",
            "--cert-dir", str(tmp_path),
            "--name", "peer",
            "--hostname", "localhost",
            "--key-size", "2048",
            "--json",
        ])
        assert code == 0

        output = json.loads(capsys.readouterr().out)
        assert output["cert"] == str(tmp_path / "peer.crt")
        assert (tmp_path / "peer.key").exists()
        assert output["fingerprint"].count(":") == 31

    def test_text_output(self, tmp_path, capsys):
        assert main(["gen-cert", "--cert-dir", str(tmp_path), "--key-size", "2048"]) == 0
        assert "Fingerprint (SHA256):" in capsys.readouterr().out

    def test_pair_config_round_trip(self, tmp_path, capsys, recipient):
        """The printed pair config works as-is for listen and send."""
        assert main(["gen-cert", "--pair", "--cert-dir", str(tmp_path), "--hostname", "localhost"]) == 0
        output = capsys.readouterr().out
        assert output.startswith("# server fingerprint (SHA256): ")
        config = yaml.safe_load(output)
        assert set(config) == {"listen", "send"}

        controller = ServerController(recipient)
        outcome = Outcome()
        controller.listen({**config["listen"], "host": "127.0.0.1", "ok": outcome.ok})
        assert outcome.wait()
        port = controller.server_address[1]

        try:
            config_path = tmp_path / "transport.yaml"
            config_path.write_text(output)
            assert main(["send", "-c", str(config_path), f"tcp://localhost:{port}/#pair", "hi"]) == 0
            assert recipient.wait()
            assert recipient.messages[0].content == "hi"
        finally:
            controller.close().join(5)
