"""End-to-end tests for the command line surface."""
import json

import httpx
import pytest
from typer.testing import CliRunner

from sequence_builder.cli import app as cli
from sequence_builder.config import CredentialStore, Session
from sequence_builder.wallet import cipher

from conftest import KNOWN_ADDRESS, KNOWN_KEY, Recorder, auth_response, future, ok_json

runner = CliRunner()


@pytest.fixture
def recorder(monkeypatch):
    """Install a recorder as the CLI's HTTP transport; queue responses on it."""
    rec = Recorder()
    monkeypatch.setattr(cli, "_transport", rec.transport)
    return rec


def invoke(*args):
    return runner.invoke(cli.app, list(args))


def json_out(result) -> dict:
    return json.loads(result.stdout)


class TestHelp:

    def test_top_level_help(self):
        result = invoke("--help")
        assert result.exit_code == 0
        for command in ("create-wallet", "login", "status", "projects", "apikeys", "indexer", "transfer"):
            assert command in result.stdout

    def test_no_args_shows_help(self):
        result = invoke()
        assert "login" in result.output


class TestCreateWallet:

    def test_json_without_passphrase(self):
        result = invoke("create-wallet", "--json")
        assert result.exit_code == 0
        data = json_out(result)
        assert data["keyStored"] is False
        assert data["privateKey"].startswith("0x") and len(data["privateKey"]) == 66
        assert data["address"].startswith("0x")
        assert CredentialStore().load().encrypted_key is None

    def test_passphrase_stores_key(self, monkeypatch):
        monkeypatch.setenv("SEQUENCE_PASSPHRASE", "pw")
        data = json_out(invoke("create-wallet", "--json"))
        assert data["keyStored"] is True
        bundle = CredentialStore().load().encrypted_key
        assert cipher.decrypt(bundle, "pw") == data["privateKey"]

    def test_human_output(self):
        result = invoke("create-wallet")
        assert result.exit_code == 0
        assert "Wallet created successfully" in result.stdout


class TestWalletInfo:

    def test_explicit_key(self):
        result = invoke("wallet-info", "-k", KNOWN_KEY, "--json")
        assert result.exit_code == 0
        assert json_out(result) == {"eoaAddress": KNOWN_ADDRESS}

    def test_stored_key(self, monkeypatch):
        monkeypatch.setenv("SEQUENCE_PASSPHRASE", "pw")
        CredentialStore().update(encrypted_key=cipher.encrypt(KNOWN_KEY, "pw"))
        assert json_out(invoke("wallet-info", "--json")) == {"eoaAddress": KNOWN_ADDRESS}

    def test_no_key_available(self):
        result = invoke("wallet-info", "--json")
        assert result.exit_code == 11
        assert "No private key provided" in json_out(result)["error"]

    def test_wrong_passphrase(self, monkeypatch):
        CredentialStore().update(encrypted_key=cipher.encrypt(KNOWN_KEY, "pw"))
        monkeypatch.setenv("SEQUENCE_PASSPHRASE", "other")
        result = invoke("wallet-info", "--json")
        assert result.exit_code == 11

    def test_malformed_key(self):
        result = invoke("wallet-info", "-k", "0x1234", "--json")
        assert result.exit_code == 11
        assert json_out(result)["error"] == "Invalid private key format"


class TestLoginFlow:

    def test_login_status_logout(self, recorder):
        recorder.queue(auth_response("jwt-1", "2099-01-01T00:00:00Z"))

        result = invoke("login", "-k", KNOWN_KEY, "--json")
        assert result.exit_code == 0
        data = json_out(result)
        assert data["success"] is True
        assert data["address"] == KNOWN_ADDRESS
        assert data["expiresAt"].startswith("2099-01-01T00:00:00")
        assert data["keyStored"] is False
        assert str(recorder.requests[0].url) == "https://api.sequence.build/rpc/Builder/GetAuthToken"

        status = json_out(invoke("status", "--json"))
        assert status["loggedIn"] is True
        assert status["environment"] == "prod"

        assert json_out(invoke("logout", "--json")) == {"success": True}
        assert json_out(invoke("status", "--json"))["loggedIn"] is False

    def test_login_with_passphrase_stores_key(self, recorder, monkeypatch):
        monkeypatch.setenv("SEQUENCE_PASSPHRASE", "pw")
        recorder.queue(auth_response())
        data = json_out(invoke("login", "-k", KNOWN_KEY, "--json"))
        assert data["keyStored"] is True
        assert json_out(invoke("status", "--json"))["keyStored"] is True

    def test_login_dev_environment(self, recorder):
        recorder.queue(auth_response())
        invoke("login", "-k", KNOWN_KEY, "--env", "dev", "--json")
        assert recorder.requests[0].url.host == "dev-api.sequence.build"
        assert json_out(invoke("status", "--json"))["environment"] == "dev"

    def test_env_login_replaces_custom_url(self, recorder):
        recorder.queue(auth_response(), auth_response(), ok_json({"projects": []}))

        invoke("login", "-k", KNOWN_KEY, "--api-url", "https://custom.test", "--json")
        invoke("login", "-k", KNOWN_KEY, "--env", "dev", "--json")
        result = invoke("projects", "list", "--json")

        assert result.exit_code == 0
        hosts = [request.url.host for request in recorder.requests]
        assert hosts == ["custom.test", "dev-api.sequence.build", "dev-api.sequence.build"]

    def test_login_invalid_key(self, recorder):
        result = invoke("login", "-k", "0xdeadbeef", "--json")
        assert result.exit_code == 11
        assert recorder.requests == []

    def test_login_rate_limited(self, recorder):
        recorder.queue(httpx.Response(429, headers={"Retry-After": "120"}, text="slow down"))
        result = invoke("login", "-k", KNOWN_KEY, "--json")
        assert result.exit_code == 40
        data = json_out(result)
        assert data["kind"] == "rate_limited"
        assert data["retryAfterSeconds"] == 120
        assert data["statusCode"] == 429

    def test_login_permission_denied(self, recorder):
        recorder.queue(httpx.Response(403, text="PermissionDenied"))
        result = invoke("login", "-k", KNOWN_KEY, "--json")
        assert result.exit_code == 40
        assert json_out(result)["kind"] == "permission_denied"

    def test_login_without_token(self, recorder):
        recorder.queue(ok_json({"ok": False}))
        result = invoke("login", "-k", KNOWN_KEY, "--json")
        assert result.exit_code == 40
        assert json_out(result)["error"] == "Authentication failed"

    def test_status_human(self):
        result = invoke("status")
        assert result.exit_code == 0
        assert "not logged in" in result.stdout


@pytest.fixture
def logged_in():
    CredentialStore().update(session=Session(bearer_token="jwt-abc", expires_at=future(24)))


class TestProjects:

    def test_requires_login(self):
        result = invoke("projects", "list", "--json")
        assert result.exit_code == 10
        assert json_out(result) == {"error": "Not logged in", "code": 10}

    def test_list(self, logged_in, recorder):
        recorder.queue(ok_json({"projects": [{"id": 1, "name": "Demo"}]}))
        result = invoke("projects", "list", "--json")
        assert result.exit_code == 0
        assert json_out(result) == {"projects": [{"id": 1, "name": "Demo"}]}
        assert recorder.requests[0].headers["authorization"] == "Bearer jwt-abc"

    def test_bare_group_lists(self, logged_in, recorder):
        recorder.queue(ok_json({"projects": []}))
        result = invoke("projects")
        assert result.exit_code == 0
        assert "No projects found" in result.stdout

    def test_create_with_chain_ids(self, logged_in, recorder):
        recorder.queue(
            ok_json({"project": {"id": 9, "name": "Demo"}}),
            ok_json({"accessKey": {"accessKey": "AQAAA"}}),
        )
        result = invoke("projects", "create", "Demo", "--chain-ids", "1, 137", "--json")
        assert result.exit_code == 0
        assert json_out(result) == {"project": {"id": 9, "name": "Demo"}, "accessKey": "AQAAA"}
        assert recorder.body(0) == {"name": "Demo", "options": {"chainIds": [1, 137]}}
        assert recorder.body(1) == {"projectID": 9}

    def test_create_survives_key_lookup_failure(self, logged_in, recorder):
        recorder.queue(
            ok_json({"project": {"id": 9, "name": "Demo"}}),
            httpx.Response(500, text="boom"),
        )
        result = invoke("projects", "create", "Demo", "--json")
        assert result.exit_code == 0
        assert json_out(result)["accessKey"] is None

    def test_create_bad_chain_ids(self, logged_in, recorder):
        result = invoke("projects", "create", "Demo", "--chain-ids", "1,polygon", "--json")
        assert result.exit_code == 1
        assert recorder.requests == []

    def test_get_invalid_id(self, logged_in, recorder):
        result = invoke("projects", "get", "abc", "--json")
        assert result.exit_code == 31
        assert json_out(result)["error"] == "Invalid project ID"
        assert recorder.requests == []

    def test_get_missing_project(self, logged_in, recorder):
        recorder.queue(ok_json({}))
        result = invoke("projects", "get", "5", "--json")
        assert result.exit_code == 31

    def test_get(self, logged_in, recorder):
        recorder.queue(ok_json({"project": {"id": 5, "name": "P"}}))
        result = invoke("projects", "get", "5", "--json")
        assert result.exit_code == 0
        assert recorder.body() == {"id": 5}

    def test_expired_session_needs_login(self, recorder):
        CredentialStore().update(session=Session(bearer_token="old", expires_at="2000-01-01T00:00:00Z"))
        result = invoke("projects", "list", "--json")
        assert result.exit_code == 10
        assert recorder.requests == []

    def test_server_error(self, logged_in, recorder):
        recorder.queue(httpx.Response(500, text="db down"))
        result = invoke("projects", "list", "--json")
        assert result.exit_code == 40
        assert json_out(result)["detail"] == "db down"


class TestApiKeys:

    def test_list(self, logged_in, recorder):
        keys = [{"accessKey": "AQ1", "displayName": "Default", "active": True, "default": True}]
        recorder.queue(ok_json({"accessKeys": keys}))
        result = invoke("apikeys", "list", "3", "--json")
        assert result.exit_code == 0
        assert json_out(result) == {"accessKeys": keys}
        assert recorder.requests[0].url.path == "/rpc/QuotaControl/ListAccessKeys"

    def test_list_human(self, logged_in, recorder):
        recorder.queue(ok_json({"accessKeys": []}))
        result = invoke("apikeys", "list", "3")
        assert "No API keys found" in result.stdout

    def test_default(self, logged_in, recorder):
        recorder.queue(ok_json({"accessKey": {"accessKey": "AQ1"}}))
        result = invoke("apikeys", "default", "3", "--json")
        assert json_out(result) == {"accessKey": {"accessKey": "AQ1"}}

    def test_default_missing(self, logged_in, recorder):
        recorder.queue(ok_json({}))
        result = invoke("apikeys", "default", "3", "--json")
        assert result.exit_code == 31
        assert json_out(result)["error"] == "No default key found"

    def test_requires_login(self):
        assert invoke("apikeys", "default", "3", "--json").exit_code == 10


class TestIndexer:

    def test_balances(self, recorder):
        recorder.queue(ok_json({"balances": []}))
        result = invoke("indexer", "balances", KNOWN_ADDRESS, "-a", "ak", "-n", "polygon", "--json")
        assert result.exit_code == 0
        assert json_out(result) == {"balances": []}
        assert recorder.requests[0].url.host == "polygon-indexer.sequence.app"
        assert recorder.requests[0].headers["x-access-key"] == "ak"

    def test_invalid_address(self, recorder):
        result = invoke("indexer", "native-balance", "nope", "-a", "ak", "--json")
        assert result.exit_code == 1
        assert recorder.requests == []

    def test_invalid_network(self, recorder):
        result = invoke("indexer", "history", KNOWN_ADDRESS, "-a", "ak", "-n", "Bad Net", "--json")
        assert result.exit_code == 1
        assert recorder.requests == []

    def test_api_error(self, recorder):
        recorder.queue(httpx.Response(401, text="bad key"))
        result = invoke("indexer", "token-info", KNOWN_ADDRESS, "-a", "ak", "--json")
        assert result.exit_code == 40
        assert json_out(result)["kind"] == "unauthorized"


class TestTransfer:

    def test_requires_key(self):
        result = invoke(
            "transfer", "-a", "ak", "-t", KNOWN_ADDRESS, "-r", KNOWN_ADDRESS,
            "-m", "1", "-n", "polygon", "--json",
        )
        assert result.exit_code == 11

    def test_invalid_recipient(self):
        result = invoke(
            "transfer", "-a", "ak", "-t", KNOWN_ADDRESS, "-r", "bob",
            "-m", "1", "-n", "polygon", "-k", KNOWN_KEY, "--json",
        )
        assert result.exit_code == 1
        assert json_out(result)["error"] == "Invalid recipient address"
