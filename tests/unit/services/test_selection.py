"""
Tests for the selection workflow: single and bulk admin decisions and the
automatic release of an applicant's other applications.
"""

import pytest
from sqlalchemy import select

from api.services.selection import bulk_update_status, update_application_status
from core.exceptions import (
    ApplicationNotFound,
    InvalidSelectionAction,
    InvalidTransition,
    TerminalStateViolation,
)
from database.models import ActorType, ApplicationStatus, ApplicationStatusHistory

S = ApplicationStatus


async def _ledger(session, application_id):
    result = await session.execute(
        select(ApplicationStatusHistory)
        .where(ApplicationStatusHistory.application_id == application_id)
        .order_by(ApplicationStatusHistory.history_id)
    )
    return result.scalars().all()


class TestUpdateApplicationStatus:
    """Single, all-or-nothing selection."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("source", [S.ELIGIBLE, S.ON_HOLD])
    @pytest.mark.parametrize("action", [S.SELECTED, S.REJECTED])
    async def test_allowed_moves(self, factory, source, action):
        post = await factory.post()
        applicant = await factory.applicant()
        application = await factory.application(applicant, post, status=source)
        await factory.commit()

        result = await update_application_status(
            factory.session, application.application_id, action, admin_id=5, remarks="Panel decision"
        )

        assert result["old_status"] == source
        assert result["status"] == action
        assert application.verified_by == 5
        assert application.selection_status == action.value
        ledger = await _ledger(factory.session, application.application_id)
        assert len(ledger) == 1
        assert ledger[0].changed_by == 5
        assert ledger[0].changed_by_type == ActorType.ADMIN
        assert ledger[0].remarks == "Panel decision"

    @pytest.mark.asyncio
    async def test_hold(self, factory):
        post = await factory.post()
        applicant = await factory.applicant()
        application = await factory.application(applicant, post, status=S.ELIGIBLE)
        await factory.commit()

        result = await update_application_status(factory.session, application.application_id, "ON_HOLD", 1)
        assert result["status"] == S.ON_HOLD
        assert application.selected_at is None

    @pytest.mark.asyncio
    async def test_selected_sets_timestamp(self, factory):
        post = await factory.post()
        applicant = await factory.applicant()
        application = await factory.application(applicant, post, status=S.ELIGIBLE)
        await factory.commit()

        await update_application_status(factory.session, application.application_id, S.SELECTED, 1)
        assert application.selected_at is not None

    @pytest.mark.asyncio
    async def test_invalid_action(self, factory):
        with pytest.raises(InvalidSelectionAction):
            await update_application_status(factory.session, 1, S.WITHDRAWN, 1)
        with pytest.raises(InvalidSelectionAction):
            await update_application_status(factory.session, 1, "PROMOTED", 1)

    @pytest.mark.asyncio
    async def test_wrong_source_status(self, factory):
        post = await factory.post()
        applicant = await factory.applicant()
        application = await factory.application(applicant, post, status=S.SUBMITTED)
        await factory.commit()
        app_id = application.application_id

        with pytest.raises(InvalidTransition):
            await update_application_status(factory.session, app_id, S.SELECTED, 1)

        assert await factory.status_of(app_id) == S.SUBMITTED
        assert await factory.history_count(app_id) == 0

    @pytest.mark.asyncio
    async def test_terminal_source_status(self, factory):
        post = await factory.post()
        applicant = await factory.applicant()
        application = await factory.application(applicant, post, status=S.REJECTED)
        await factory.commit()

        with pytest.raises(TerminalStateViolation):
            await update_application_status(factory.session, application.application_id, S.SELECTED, 1)

    @pytest.mark.asyncio
    async def test_missing_application(self, session):
        with pytest.raises(ApplicationNotFound):
            await update_application_status(session, 77, S.SELECTED, 1)


class TestAutoRelease:
    """Selecting an applicant frees their other open applications."""

    @pytest.mark.asyncio
    async def test_other_open_applications_released(self, factory):
        chosen_post = await factory.post(post_name="Worker")
        post_b = await factory.post()
        post_c = await factory.post()
        post_d = await factory.post()
        applicant = await factory.applicant()
        chosen = await factory.application(applicant, chosen_post, status=S.ELIGIBLE)
        on_hold = await factory.application(applicant, post_b, status=S.ON_HOLD)
        provisional = await factory.application(applicant, post_c, status=S.PROVISIONAL_SELECTED)
        rejected = await factory.application(applicant, post_d, status=S.REJECTED)
        await factory.commit()

        result = await update_application_status(
            factory.session, chosen.application_id, S.SELECTED, admin_id=9, release_others=True
        )

        assert sorted(result["released_application_ids"]) == sorted(
            [on_hold.application_id, provisional.application_id]
        )
        assert await factory.status_of(on_hold.application_id) == S.SELECTED_IN_OTHER_POST
        assert await factory.status_of(provisional.application_id) == S.SELECTED_IN_OTHER_POST
        assert await factory.status_of(rejected.application_id) == S.REJECTED

        ledger = await _ledger(factory.session, on_hold.application_id)
        assert len(ledger) == 1
        assert ledger[0].changed_by_type == ActorType.SYSTEM
        assert ledger[0].remarks == (
            f"Applicant was selected for post: Worker ({chosen_post.post_code})"
        )
        assert ledger[0].change_metadata["selected_application_id"] == chosen.application_id
        assert on_hold.auto_rejected_reason == ledger[0].remarks

    @pytest.mark.asyncio
    async def test_release_can_be_disabled(self, factory):
        post_a = await factory.post()
        post_b = await factory.post()
        applicant = await factory.applicant()
        chosen = await factory.application(applicant, post_a, status=S.ELIGIBLE)
        other = await factory.application(applicant, post_b, status=S.ELIGIBLE)
        await factory.commit()

        result = await update_application_status(
            factory.session, chosen.application_id, S.SELECTED, 1, release_others=False
        )

        assert result["released_application_ids"] == []
        assert await factory.status_of(other.application_id) == S.ELIGIBLE

    @pytest.mark.asyncio
    async def test_rejection_releases_nothing(self, factory):
        post_a = await factory.post()
        post_b = await factory.post()
        applicant = await factory.applicant()
        chosen = await factory.application(applicant, post_a, status=S.ELIGIBLE)
        other = await factory.application(applicant, post_b, status=S.ELIGIBLE)
        await factory.commit()

        await update_application_status(factory.session, chosen.application_id, S.REJECTED, 1, release_others=True)
        assert await factory.status_of(other.application_id) == S.ELIGIBLE


class TestBulkUpdateStatus:
    """Bulk decisions record failures per item and keep going."""

    @pytest.mark.asyncio
    async def test_partial_failure_does_not_abort_batch(self, factory):
        post = await factory.post()
        ok_one = await factory.application(await factory.applicant(), post, status=S.ELIGIBLE)
        wrong_status = await factory.application(await factory.applicant(), post, status=S.SUBMITTED)
        ok_two = await factory.application(await factory.applicant(), post, status=S.ON_HOLD)
        await factory.commit()
        ids = [ok_one.application_id, wrong_status.application_id, 9999, ok_two.application_id]
        ok_one_id, wrong_id, _, ok_two_id = ids

        result = await bulk_update_status(factory.session, ids, S.REJECTED, admin_id=4, remarks="Cut-off")

        assert result["total"] == 4
        assert result["successful_count"] == 2
        assert result["failed_count"] == 2
        assert [item["application_id"] for item in result["successful"]] == [ok_one_id, ok_two_id]
        failures = {item["application_id"]: item["code"] for item in result["failed"]}
        assert failures == {
            wrong_id: "INVALID_TRANSITION",
            9999: "APPLICATION_NOT_FOUND",
        }
        assert await factory.status_of(ok_two_id) == S.REJECTED
        assert await factory.status_of(wrong_id) == S.SUBMITTED

    @pytest.mark.asyncio
    async def test_bulk_ledger_is_audited(self, factory):
        post = await factory.post()
        application = await factory.application(await factory.applicant(), post, status=S.ELIGIBLE)
        await factory.commit()

        await bulk_update_status(factory.session, [application.application_id], S.ON_HOLD, admin_id=8)

        ledger = await _ledger(factory.session, application.application_id)
        assert ledger[0].changed_by == 8
        assert ledger[0].change_metadata == {"bulk_action": True}

    @pytest.mark.asyncio
    async def test_duplicate_ids_processed_once(self, factory):
        post = await factory.post()
        application = await factory.application(await factory.applicant(), post, status=S.ELIGIBLE)
        await factory.commit()
        app_id = application.application_id

        result = await bulk_update_status(factory.session, [app_id, app_id], S.ON_HOLD, admin_id=1)

        assert result["total"] == 1
        assert await factory.history_count(app_id) == 1

    @pytest.mark.asyncio
    async def test_selection_in_batch_releases_later_item(self, factory):
        post_a = await factory.post()
        post_b = await factory.post()
        applicant = await factory.applicant()
        first = await factory.application(applicant, post_a, status=S.ELIGIBLE)
        second = await factory.application(applicant, post_b, status=S.ELIGIBLE)
        await factory.commit()
        first_id, second_id = first.application_id, second.application_id

        result = await bulk_update_status(
            factory.session,
            [first_id, second_id],
            S.SELECTED,
            admin_id=1,
            release_others=True,
        )

        assert result["successful_count"] == 1
        assert result["failed"][0]["application_id"] == second_id
        assert await factory.status_of(second_id) == S.SELECTED_IN_OTHER_POST

    @pytest.mark.asyncio
    async def test_invalid_action_rejected_up_front(self, session):
        with pytest.raises(InvalidSelectionAction):
            await bulk_update_status(session, [1, 2], S.ELIGIBLE, admin_id=1)
