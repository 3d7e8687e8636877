"""
promptp2p/tests/test_client.py

Unit tests for the client session, authenticated requests and client worker.
"""

import pytest
from unittest.mock import Mock, AsyncMock


@pytest.fixture
def mock_transport():
    """Transport mock whose request() returns a fixed result."""
    transport = Mock()
    transport.request = AsyncMock(return_value={"response": "Hi there"})
    transport.start_discovery = Mock()
    return transport


@pytest.fixture
def worker(mock_transport):
    from promptp2p.client import ClientWorker
    return ClientWorker(mock_transport)


class TestSessionState:
    """Tests for SessionState."""

    def test_starts_empty(self):
        """Test no credential at construction."""
        from promptp2p.client import SessionState

        session = SessionState()
        assert session.token is None
        assert session.has_token is False

    def test_set_and_clear(self):
        """Test clear reports whether a credential was held."""
        from promptp2p.client import SessionState

        session = SessionState()
        session.set("abc")
        assert session.token == "abc"

        assert session.clear() is True
        assert session.clear() is False
        assert session.token is None

    def test_repr_hides_token(self):
        """Test the repr only shows a preview."""
        from promptp2p.client import SessionState

        token = "x" * 50
        assert token not in repr(SessionState(token))


class TestAuthenticatedRequestClient:
    """Tests for AuthenticatedRequestClient."""

    @pytest.mark.trio
    async def test_prompt_call_arguments(self, mock_transport):
        """Test exact transport call for an authenticated prompt."""
        from promptp2p.client import AuthenticatedRequestClient, SessionState

        client = AuthenticatedRequestClient(mock_transport, SessionState("abc"))

        result = await client.call("gateway", "processPrompt", {"prompt": "Hello"})

        assert result == {"response": "Hi there"}
        mock_transport.request.assert_awaited_once_with(
            "gateway",
            "processPrompt",
            {"data": {"prompt": "Hello"}, "meta": {"key": "abc"}},
            {},
            3,
            200,
        )

    @pytest.mark.trio
    async def test_register_call_arguments(self, mock_transport):
        """Test register never carries meta even with a credential."""
        from promptp2p.client import AuthenticatedRequestClient, SessionState

        client = AuthenticatedRequestClient(mock_transport, SessionState("abc"))

        await client.call("gateway", "register", {"email": "a@b.com", "password": "pw"})

        mock_transport.request.assert_awaited_once_with(
            "gateway",
            "register",
            {"data": {"email": "a@b.com", "password": "pw"}},
            {},
            3,
            200,
        )

    @pytest.mark.trio
    async def test_missing_credential_still_sent(self, mock_transport):
        """Test a protected call without credential is sent without meta."""
        from promptp2p.client import AuthenticatedRequestClient, SessionState

        client = AuthenticatedRequestClient(mock_transport, SessionState())

        await client.call("gateway", "processPrompt", {"prompt": "Hello"})

        envelope = mock_transport.request.await_args.args[2]
        assert envelope == {"data": {"prompt": "Hello"}}

    @pytest.mark.trio
    async def test_error_passes_through(self, mock_transport):
        """Test the transport error reaches the caller unchanged."""
        from promptp2p.client import AuthenticatedRequestClient, SessionState

        error = RuntimeError("CHANNEL_CLOSED")
        mock_transport.request = AsyncMock(side_effect=error)
        client = AuthenticatedRequestClient(mock_transport, SessionState("abc"))

        with pytest.raises(RuntimeError) as exc_info:
            await client.call("gateway", "processPrompt", {"prompt": "x"})

        assert exc_info.value is error

    @pytest.mark.trio
    async def test_attempt_observer(self, mock_transport):
        """Test observer receives success and failure attempts."""
        from promptp2p.client import AuthenticatedRequestClient, SessionState
        from promptp2p.protocol import ErrorCause

        attempts = []
        client = AuthenticatedRequestClient(mock_transport, SessionState(), on_attempt=attempts.append)

        await client.call("gateway", "processPrompt", {"prompt": "x"})

        mock_transport.request = AsyncMock(side_effect=Exception("ERR_TOPIC_LOOKUP_EMPTY"))
        with pytest.raises(Exception):
            await client.call("gateway", "processPrompt", {"prompt": "x"})

        assert [a.success for a in attempts] == [True, False]
        assert attempts[1].cause is ErrorCause.ERR_TOPIC_LOOKUP_EMPTY
        assert attempts[0].duration_ms is not None
        assert attempts[1].to_dict()["cause"] == "ERR_TOPIC_LOOKUP_EMPTY"

    @pytest.mark.trio
    async def test_observer_failure_ignored(self, mock_transport):
        """Test a failing observer does not break the call."""
        from promptp2p.client import AuthenticatedRequestClient, SessionState

        observer = Mock(side_effect=Exception("observer broke"))
        client = AuthenticatedRequestClient(mock_transport, SessionState(), on_attempt=observer)

        assert await client.call("gateway", "ping", None) == {"response": "Hi there"}
        observer.assert_called_once()


class TestSessionStore:
    """Tests for login/logout/token management."""

    def _store(self, result=None, side_effect=None, token=None):
        from promptp2p.client import SessionState, SessionStore

        requests = Mock()
        requests.call = AsyncMock(return_value=result, side_effect=side_effect)
        session = SessionState(token)
        return SessionStore(requests, session), session, requests

    @pytest.mark.trio
    async def test_login_success_stores_key(self):
        """Test successful login installs the key."""
        response = {"success": True, "key": "k1", "email": "a@b.com"}
        store, session, requests = self._store(response)

        result = await store.login("a@b.com", "pw")

        assert result == response
        assert session.token == "k1"
        requests.call.assert_awaited_once_with(
            "gateway", "login", {"email": "a@b.com", "password": "pw"}
        )

    @pytest.mark.trio
    async def test_failed_login_keeps_previous_key(self):
        """Test unsuccessful or key-less responses never overwrite the key."""
        for response in (
            {"success": False, "key": "new"},
            {"success": True},
            {"success": True, "key": ""},
            {"success": "yes", "key": "new"},
            None,
        ):
            store, session, _ = self._store(response, token="old")

            await store.login("a@b.com", "pw")

            assert session.token == "old"

    @pytest.mark.trio
    async def test_login_transport_error_keeps_key(self):
        """Test a transport error propagates and leaves the key."""
        store, session, _ = self._store(side_effect=RuntimeError("CHANNEL_CLOSED"), token="old")

        with pytest.raises(RuntimeError):
            await store.login("a@b.com", "pw")

        assert session.token == "old"

    def test_logout(self):
        """Test logout with and without a session."""
        store, session, _ = self._store(token="k")

        assert store.logout() == {"success": True, "message": "Logged out successfully"}
        assert session.token is None
        assert store.logout() == {"success": False, "message": "No active session to logout"}

    def test_get_token(self):
        """Test reading the token."""
        store, _, _ = self._store(token="k")
        assert store.get_token() == {
            "success": True,
            "token": "k",
            "message": "API token retrieved successfully",
        }

        store, _, _ = self._store()
        assert store.get_token() == {
            "success": False,
            "message": "No active session - please login first",
        }

    def test_set_token(self):
        """Test manual token installation."""
        store, session, _ = self._store()

        assert store.set_token("  tok  ")["success"] is True
        assert session.token == "tok"

        for bad in ("", "   ", None, 42):
            result = store.set_token(bad)
            assert result == {"success": False, "message": "Token must be a non-empty string"}
        assert session.token == "tok"

    @pytest.mark.trio
    async def test_verify_without_session(self):
        """Test verify without a key does not hit the network."""
        store, _, requests = self._store()

        result = await store.verify_session()

        assert result == {"success": False, "valid": False, "message": "No active session"}
        requests.call.assert_not_awaited()

    @pytest.mark.trio
    async def test_verify_passes_result_through(self):
        """Test the gateway's verification result is returned as is."""
        response = {"success": True, "valid": True, "email": "a@b.com"}
        store, _, requests = self._store(response, token="k")

        assert await store.verify_session() == response
        requests.call.assert_awaited_once_with("gateway", "verifySession", {})

    @pytest.mark.trio
    async def test_verify_transport_error(self):
        """Test a transport error becomes an invalid result."""
        store, _, _ = self._store(side_effect=RuntimeError("ETIMEDOUT"), token="k")

        result = await store.verify_session()

        assert result == {"success": False, "valid": False, "message": "Session verification failed"}


class TestClientWorker:
    """Tests for ClientWorker."""

    @pytest.mark.trio
    async def test_start_without_transport(self):
        """Test start fails when the net facility is missing."""
        from promptp2p.client import ClientWorker
        from promptp2p.transport import FacilityNotAvailableError

        worker = ClientWorker(None)

        with pytest.raises(FacilityNotAvailableError, match="net facility not available"):
            await worker.start()
        assert worker.started is False

    @pytest.mark.trio
    async def test_start_enables_discovery(self, worker, mock_transport):
        """Test start turns on topic lookups."""
        await worker.start()
        await worker.start()

        assert worker.started is True
        mock_transport.start_discovery.assert_called_once()

        await worker.stop()
        assert worker.started is False

    @pytest.mark.trio
    async def test_send_request(self, worker, mock_transport):
        """Test prompts go to gateway.processPrompt."""
        worker.set_api_token("abc")

        result = await worker.send_request("Hello")

        assert result == {"response": "Hi there"}
        mock_transport.request.assert_awaited_once_with(
            "gateway",
            "processPrompt",
            {"data": {"prompt": "Hello"}, "meta": {"key": "abc"}},
            {},
            3,
            200,
        )
        assert worker.last_hint is None

    @pytest.mark.trio
    async def test_send_request_failure_sets_hint(self, worker, mock_transport):
        """Test failures are classified and re-raised."""
        error = Exception("ERR_TOPIC_LOOKUP_EMPTY: gateway")
        mock_transport.request = AsyncMock(side_effect=error)

        with pytest.raises(Exception) as exc_info:
            await worker.send_request("Hello")

        assert exc_info.value is error
        assert "gateway worker is running" in worker.last_hint

    @pytest.mark.trio
    async def test_failure_logged_with_request_id(self, mock_transport, caplog):
        """Test the hint line carries the id of the failed call."""
        import logging
        from promptp2p.client import ClientWorker

        attempts = []
        worker = ClientWorker(mock_transport, on_attempt=attempts.append)
        mock_transport.request = AsyncMock(side_effect=Exception("ETIMEDOUT"))

        with caplog.at_level(logging.ERROR, logger="promptp2p.client.worker"):
            with pytest.raises(Exception):
                await worker.send_request("Hello")

        request_id = attempts[0].request_id
        assert worker.requests.last_attempt is attempts[0]
        hint_lines = [r.getMessage() for r in caplog.records if r.name == "promptp2p.client.worker"]
        assert hint_lines and hint_lines[0].startswith(f"[{request_id}] processPrompt failed")

    @pytest.mark.trio
    async def test_register_user(self, worker, mock_transport):
        """Test register payload."""
        await worker.register_user("a@b.com", "pw")

        mock_transport.request.assert_awaited_once_with(
            "gateway",
            "register",
            {"data": {"email": "a@b.com", "password": "pw"}},
            {},
            3,
            200,
        )

    @pytest.mark.trio
    async def test_login_then_logout(self, worker, mock_transport):
        """Test the login key is used, then dropped by logout."""
        mock_transport.request = AsyncMock(return_value={"success": True, "key": "jwt"})

        await worker.login_user("a@b.com", "pw")
        assert worker.session_key == "jwt"
        assert worker.get_api_token()["token"] == "jwt"

        assert worker.logout()["success"] is True
        assert worker.session_key is None

    def test_workers_do_not_share_sessions(self, mock_transport):
        """Test each worker has its own credential."""
        from promptp2p.client import ClientWorker

        first = ClientWorker(mock_transport)
        second = ClientWorker(mock_transport)
        first.set_api_token("one")

        assert second.session_key is None
