"""
Handler tests with mocked repositories
Argument parsing, validation before any repository call, and response shapes.
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from handlers import HANDLER_REGISTRY, get_handler, list_operations
from handlers.common import dump, parse_flag, parse_id, parse_optional_id
from handlers.record_handlers import (
    handle_create_record, handle_delete_record, handle_list_records, handle_update_record,
)
from handlers.session_handlers import (
    handle_attach_comment, handle_create_implicit_comment, handle_create_session,
    handle_list_session_comments, handle_list_sessions, handle_search_comments,
)
from handlers.stats_handlers import (
    handle_stats_module_summary, handle_stats_module_top_patients, handle_stats_patients,
)
from handlers.user_handlers import handle_delete_user, handle_set_user_active, handle_update_user
from models import (
    ImplicitCommentResult, ModuleSummary, PatientRecord, PatientReportPage,
    SessionComment, SessionNote, UserRecord,
)
from utils.errors import ValidationError


@pytest.fixture
def mock_repos():
    repos = MagicMock()
    repos.patients = AsyncMock()
    repos.sessions = AsyncMock()
    repos.comments = AsyncMock()
    repos.users = AsyncMock()
    repos.stats = AsyncMock()
    return repos


class TestRegistry:

    def test_every_operation_is_registered(self):
        assert set(list_operations()) == {
            "list_records", "create_record", "update_record", "delete_record",
            "list_sessions", "create_session", "attach_comment", "create_implicit_comment",
            "list_session_comments", "search_comments",
            "stats_overview", "stats_patients", "stats_modules", "stats_module_summary",
            "stats_module_series", "stats_module_top_patients", "stats_notes",
            "list_users", "get_user", "update_user", "set_user_active", "delete_user",
        }

    def test_only_user_administration_is_admin_only(self):
        admin_only = {name for name, (_, gated) in HANDLER_REGISTRY.items() if gated}
        assert admin_only == {"list_users", "get_user", "update_user", "set_user_active", "delete_user"}

    def test_unknown_operation(self):
        assert get_handler("drop_everything") is None


class TestArgumentParsing:

    @pytest.mark.parametrize("raw, expected", [("12", 12), (3, 3), (" 4 ", 4)])
    def test_parse_id(self, raw, expected):
        assert parse_id(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "abc", "0", "-2", "1.5"])
    def test_parse_id_rejects(self, raw):
        with pytest.raises(ValidationError):
            parse_id(raw)

    def test_parse_optional_id(self):
        assert parse_optional_id(None) is None
        assert parse_optional_id(" ") is None
        assert parse_optional_id("9") == 9

    @pytest.mark.parametrize("raw, expected", [
        ("1", True), ("true", True), ("YES", True), ("on", True),
        ("0", False), ("false", False), (None, False), ("", False),
    ])
    def test_parse_flag(self, raw, expected):
        assert parse_flag(raw) is expected

    def test_dump_serializes_dates(self):
        note = SessionNote(id=1, occurred_at=datetime(2024, 5, 1, 9, 30))
        assert dump([note])[0]["occurred_at"] == "2024-05-01T09:30:00"


class TestRecordHandlers:

    @pytest.mark.asyncio
    async def test_list_passes_filters(self, mock_repos, clinician):
        mock_repos.patients.list_patients.return_value = [PatientRecord(id=1, last_name="Doe")]

        result = await handle_list_records(
            {"q": "doe", "sex": "F", "order": "asc", "limit": "20", "all": "1"}, mock_repos, clinician)

        assert result[0]["last_name"] == "Doe"
        mock_repos.patients.list_patients.assert_called_once_with(
            clinician, search="doe", sex="F", order="asc", limit="20", show_all=True, mine=False)

    @pytest.mark.asyncio
    async def test_create_validates_before_writing(self, mock_repos, clinician):
        with pytest.raises(ValidationError) as exc_info:
            await handle_create_record({"first_name": "Ana", "last_name": "Doe", "sex": "X"}, mock_repos, clinician)

        assert exc_info.value.message == "sex: sex must be M or F"
        mock_repos.patients.create_patient.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_requires_names(self, mock_repos, clinician):
        with pytest.raises(ValidationError) as exc_info:
            await handle_create_record({"first_name": "  ", "last_name": "Doe", "sex": "F"}, mock_repos, clinician)
        assert "first_name is required" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_create_rejects_out_of_range_age(self, mock_repos, clinician):
        with pytest.raises(ValidationError):
            await handle_create_record(
                {"first_name": "Ana", "last_name": "Doe", "sex": "F", "age": 130}, mock_repos, clinician)

    @pytest.mark.asyncio
    async def test_create(self, mock_repos, clinician):
        mock_repos.patients.create_patient.return_value = PatientRecord(id=10, sex="F", clinician_id=7)

        result = await handle_create_record(
            {"first_name": " Ana ", "last_name": "Doe", "sex": "f", "age": "", "clinician_id": 99},
            mock_repos, clinician)

        assert result["id"] == 10
        data = mock_repos.patients.create_patient.call_args[0][1]
        assert data.first_name == "Ana"
        assert data.sex == "F"
        assert data.age is None

    @pytest.mark.asyncio
    async def test_update_ignores_path_id_in_body(self, mock_repos, clinician):
        mock_repos.patients.update_patient.return_value = PatientRecord(id=3, age=40)

        await handle_update_record({"id": "3", "age": 40}, mock_repos, clinician)

        _, patient_id, data = mock_repos.patients.update_patient.call_args[0]
        assert patient_id == 3
        assert data.model_fields_set == {"age"}

    @pytest.mark.asyncio
    async def test_update_bad_id(self, mock_repos, clinician):
        with pytest.raises(ValidationError):
            await handle_update_record({"id": "abc", "age": 40}, mock_repos, clinician)
        mock_repos.patients.update_patient.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete(self, mock_repos, clinician):
        assert await handle_delete_record({"id": "3"}, mock_repos, clinician) == {"ok": True}
        mock_repos.patients.delete_patient.assert_called_once_with(clinician, 3)


class TestSessionHandlers:

    @pytest.mark.asyncio
    async def test_list_accepts_owner_alias(self, mock_repos, clinician):
        mock_repos.sessions.list_sessions.return_value = []
        await handle_list_sessions({"ownerId": "4", "limit": "10"}, mock_repos, clinician)
        mock_repos.sessions.list_sessions.assert_called_once_with(clinician, patient_id=4, limit="10")

    @pytest.mark.asyncio
    async def test_create_requires_note(self, mock_repos, clinician):
        with pytest.raises(ValidationError):
            await handle_create_session({"patient_id": 1, "note": "   "}, mock_repos, clinician)
        mock_repos.sessions.create_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_create(self, mock_repos, clinician):
        mock_repos.sessions.create_session.return_value = SessionNote(id=5, patient_id=1, note="Stable")
        result = await handle_create_session({"patient_id": "1", "note": "Stable", "title": " Intake "},
                                             mock_repos, clinician)
        assert result["id"] == 5
        assert mock_repos.sessions.create_session.call_args[0][1].title == "Intake"

    @pytest.mark.asyncio
    async def test_attach_wraps_data(self, mock_repos, clinician):
        mock_repos.comments.attach.return_value = SessionComment(id=30, session_id=5, body="ok")

        result = await handle_attach_comment({"id": "5", "comment": " ok "}, mock_repos, clinician)

        assert result == {"data": SessionComment(id=30, session_id=5, body="ok").model_dump(mode="json")}
        mock_repos.comments.attach.assert_called_once_with(clinician, 5, "ok")

    @pytest.mark.asyncio
    async def test_attach_rejects_empty_comment(self, mock_repos, clinician):
        with pytest.raises(ValidationError):
            await handle_attach_comment({"id": "5", "comment": ""}, mock_repos, clinician)
        mock_repos.comments.attach.assert_not_called()

    @pytest.mark.asyncio
    async def test_implicit_comment(self, mock_repos, clinician):
        mock_repos.comments.create_with_implicit_session.return_value = ImplicitCommentResult(
            session_id=55, comment=SessionComment(id=30, session_id=55))

        result = await handle_create_implicit_comment({"patient_id": "1", "comment": "hi"}, mock_repos, clinician)

        assert result["data"]["session_id"] == 55
        mock_repos.comments.create_with_implicit_session.assert_called_once_with(clinician, 1, "hi")

    @pytest.mark.asyncio
    async def test_implicit_comment_requires_patient(self, mock_repos, clinician):
        with pytest.raises(ValidationError):
            await handle_create_implicit_comment({"comment": "hi"}, mock_repos, clinician)

    @pytest.mark.asyncio
    async def test_list_session_comments(self, mock_repos, clinician):
        mock_repos.comments.list_for_session.return_value = [SessionComment(id=2), SessionComment(id=1)]
        result = await handle_list_session_comments({"id": "5"}, mock_repos, clinician)
        assert [c["id"] for c in result["data"]] == [2, 1]

    @pytest.mark.asyncio
    async def test_search(self, mock_repos, clinician):
        mock_repos.comments.search.return_value = []
        result = await handle_search_comments({"patient_id": "2", "q": "walk", "order": "asc"}, mock_repos, clinician)
        assert result == {"data": []}
        mock_repos.comments.search.assert_called_once_with(
            clinician, patient_id=2, sex=None, search="walk", limit=None, order="asc")


class TestStatsHandlers:

    @pytest.mark.asyncio
    async def test_patients_report(self, mock_repos, clinician):
        mock_repos.stats.patient_report.return_value = PatientReportPage(total=0, page=1, limit=10, data=[])
        result = await handle_stats_patients({"page": "1"}, mock_repos, clinician)
        assert result == {"total": 0, "page": 1, "limit": 10, "data": []}

    @pytest.mark.asyncio
    async def test_module_summary_takes_type_from_path(self, mock_repos, clinician):
        mock_repos.stats.module_summary.return_value = ModuleSummary(total=2)
        result = await handle_stats_module_summary({"type": "a", "days": "7"}, mock_repos, clinician)
        assert result["total"] == 2
        mock_repos.stats.module_summary.assert_called_once_with(clinician, "a", days="7")

    @pytest.mark.asyncio
    async def test_top_patients(self, mock_repos, clinician):
        mock_repos.stats.module_top_patients.return_value = []
        await handle_stats_module_top_patients({"type": "B", "limit": "3"}, mock_repos, clinician)
        mock_repos.stats.module_top_patients.assert_called_once_with(clinician, "B", days=None, limit="3")


class TestUserHandlers:

    @pytest.mark.asyncio
    async def test_update(self, mock_repos, admin):
        mock_repos.users.update_user.return_value = UserRecord(id=4, email="new@example.org")
        result = await handle_update_user({"id": "4", "email": "new@example.org", "role": "ADMIN"}, mock_repos, admin)

        assert result["email"] == "new@example.org"
        user_id, data = mock_repos.users.update_user.call_args[0]
        assert user_id == 4
        assert data.model_fields_set == {"email"}

    @pytest.mark.asyncio
    async def test_active_flag_must_be_boolean(self, mock_repos, admin):
        with pytest.raises(ValidationError):
            await handle_set_user_active({"id": "4", "active": "yes"}, mock_repos, admin)
        mock_repos.users.set_active.assert_not_called()

    @pytest.mark.asyncio
    async def test_set_active(self, mock_repos, admin):
        mock_repos.users.set_active.return_value = UserRecord(id=4, active=False)
        result = await handle_set_user_active({"id": "4", "active": False}, mock_repos, admin)
        assert result["active"] is False
        mock_repos.users.set_active.assert_called_once_with(4, False)

    @pytest.mark.asyncio
    async def test_delete(self, mock_repos, admin):
        mock_repos.users.delete_user.return_value = UserRecord(id=4)
        result = await handle_delete_user({"id": "4"}, mock_repos, admin)
        assert result["id"] == 4
        mock_repos.users.delete_user.assert_called_once_with(admin, 4)
