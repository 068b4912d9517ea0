"""Transient error classification for progress re-reads."""

from sqlalchemy.exc import DBAPIError, OperationalError

from academy.db.procedures import ProcedureError
from academy.progress.service import is_transient_error


class TestIsTransientError:
    def test_connection_error(self):
        assert is_transient_error(ConnectionError("reset"))

    def test_timeout(self):
        assert is_transient_error(TimeoutError())

    def test_network_error_message(self):
        assert is_transient_error(RuntimeError("NetworkError when attempting to fetch resource."))

    def test_content_length_mismatch(self):
        assert is_transient_error(RuntimeError("Content-Length header of network response exceeds response Body"))

    def test_invalidated_connection(self):
        exc = DBAPIError("SELECT 1", {}, Exception("server closed the connection"), connection_invalidated=True)
        assert is_transient_error(exc)

    def test_plain_database_error_is_not_transient(self):
        exc = OperationalError("SELECT 1", {}, Exception("no such table: user_progress"))
        assert not is_transient_error(exc)

    def test_value_error_is_not_transient(self):
        assert not is_transient_error(ValueError("bad input"))


class TestProcedureError:
    def test_missing_function(self):
        err = ProcedureError("award_xp", "function award_xp(character varying, integer) does not exist")
        assert err.is_missing
        assert err.name == "award_xp"

    def test_failure_is_not_missing(self):
        assert not ProcedureError("award_xp", "User not found: u1").is_missing
