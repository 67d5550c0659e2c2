"""
Deal Lifecycle Tests.

============================================================
PURPOSE
============================================================
Tests for pending deal polling and the reactions to each
reported state.

TEST PRINCIPLES:
- Terminal states are counted exactly once
- A removed deal is never polled again
- Poll errors never count as provider failures

============================================================
"""

from pathlib import Path

import pytest

from deal_engine import DealOutcome, DealState
from deal_engine.adapters import ErrorCategory, NodeError


class TestTrack:

    @pytest.mark.asyncio
    async def test_duplicate_deal_rejected(self, lifecycle, make_deal):
        deal_cid, deal = await make_deal()

        with pytest.raises(ValueError):
            lifecycle.track(deal_cid, deal)

    @pytest.mark.asyncio
    async def test_track_updates_pending_gauge(self, lifecycle, make_deal, stats):
        await make_deal()
        await make_deal()

        assert lifecycle.pending_count == 2
        assert stats.storage_pending == 2


class TestTerminalStates:

    @pytest.mark.asyncio
    async def test_error_state(self, lifecycle, make_deal, node, stats, reporter):
        deal_cid, deal = await make_deal()
        node.set_deal_state(deal_cid, DealState.ERROR)

        outcome = await lifecycle.poll(deal_cid)

        assert outcome is DealOutcome.FAILED
        assert stats.storage_failed == 1
        assert stats.storage_successful == 0
        assert deal_cid not in lifecycle
        assert not Path(deal.file_path).exists()
        reporter.report_storage_outcome.assert_called_once_with(
            "f01000", False, "deal failed in state: StorageDealError", data_cid=deal.data_cid
        )

    @pytest.mark.asyncio
    async def test_rejected_proposal_fails(self, lifecycle, make_deal, node, stats):
        deal_cid, _ = await make_deal()
        node.set_deal_state(deal_cid, DealState.PROPOSAL_REJECTED)

        assert await lifecycle.poll(deal_cid) is DealOutcome.FAILED
        assert stats.storage_failed == 1

    @pytest.mark.asyncio
    async def test_active_state(self, lifecycle, make_deal, node, stats, allowances, retrievals, reporter, clock):
        allowances.recompute_allowance("f01000", 1 << 40, clock.now())
        deal_cid, deal = await make_deal()
        node.set_deal_state(deal_cid, DealState.ACTIVE)

        outcome = await lifecycle.poll(deal_cid)

        assert outcome is DealOutcome.SUCCEEDED
        assert stats.storage_successful == 1
        assert deal_cid not in lifecycle
        assert not Path(deal.file_path).exists()
        assert deal.data_cid in retrievals
        assert retrievals.snapshot()[deal.data_cid].content_hash == deal.content_hash
        assert allowances.get("f01000").lifetime_success_count == 1
        reporter.report_storage_outcome.assert_called_once_with(
            "f01000", True, "success", data_cid=deal.data_cid
        )

    @pytest.mark.asyncio
    async def test_completed_is_silent_cleanup(self, lifecycle, make_deal, node, stats, retrievals, reporter):
        deal_cid, deal = await make_deal()
        node.set_deal_state(deal_cid, DealState.ACTIVE)
        await lifecycle.poll(deal_cid)
        reporter.reset_mock()

        # Completed seen without Active, e.g. after a restart
        other_cid, other = await make_deal("f01001")
        node.set_deal_state(other_cid, DealState.COMPLETED)

        outcome = await lifecycle.poll(other_cid)

        assert outcome is DealOutcome.CLEANED_UP
        assert other_cid not in lifecycle
        assert not Path(other.file_path).exists()
        assert stats.storage_failed == 0
        assert stats.storage_successful == 1
        reporter.report_storage_outcome.assert_not_called()

    @pytest.mark.asyncio
    async def test_completed_drops_pending_retrieval(self, lifecycle, make_deal, node, retrievals):
        deal_cid, deal = await make_deal()
        node.set_deal_state(deal_cid, DealState.ACTIVE)
        await lifecycle.poll(deal_cid)
        assert deal.data_cid in retrievals

        lifecycle.track(deal_cid, deal)
        node.set_deal_state(deal_cid, DealState.COMPLETED)
        await lifecycle.poll(deal_cid)

        assert deal.data_cid not in retrievals

    @pytest.mark.asyncio
    async def test_active_keeps_queued_retrieval(self, lifecycle, make_deal, node, retrievals, clock):
        deal_cid, deal = await make_deal()
        node.set_deal_state(deal_cid, DealState.ACTIVE)
        await lifecycle.poll(deal_cid)
        queued_at = retrievals.snapshot()[deal.data_cid].created_at

        clock.advance(minutes=30)
        lifecycle.track(deal_cid, deal)
        assert await lifecycle.poll(deal_cid) is DealOutcome.SUCCEEDED

        assert retrievals.pending_count == 1
        assert retrievals.snapshot()[deal.data_cid].created_at == queued_at


class TestNonTerminalStates:

    @pytest.mark.parametrize("state", [DealState.STAGED, DealState.SEALING])
    @pytest.mark.asyncio
    async def test_staged_releases_file(self, lifecycle, make_deal, node, stats, state):
        deal_cid, deal = await make_deal()
        node.set_deal_state(deal_cid, state)

        outcome = await lifecycle.poll(deal_cid)

        assert outcome is DealOutcome.PENDING
        assert deal_cid in lifecycle
        assert not Path(deal.file_path).exists()
        assert stats.storage_failed == 0

    @pytest.mark.asyncio
    async def test_staged_never_times_out(self, lifecycle, make_deal, node, clock):
        deal_cid, _ = await make_deal()
        node.set_deal_state(deal_cid, DealState.SEALING)
        clock.advance(hours=48)

        assert await lifecycle.poll(deal_cid) is DealOutcome.PENDING

    @pytest.mark.asyncio
    async def test_in_progress_within_timeout(self, lifecycle, make_deal, node, clock):
        deal_cid, deal = await make_deal()
        node.set_deal_state(deal_cid, DealState.TRANSFERRING)
        clock.advance(minutes=30)

        assert await lifecycle.poll(deal_cid) is DealOutcome.PENDING
        assert Path(deal.file_path).exists()

    @pytest.mark.asyncio
    async def test_in_progress_times_out(self, lifecycle, make_deal, node, clock, stats, reporter):
        deal_cid, deal = await make_deal()
        node.set_deal_state(deal_cid, DealState.TRANSFERRING)
        clock.advance(hours=2)

        outcome = await lifecycle.poll(deal_cid)

        assert outcome is DealOutcome.TIMED_OUT
        assert deal_cid not in lifecycle
        assert stats.storage_failed == 1
        assert not Path(deal.file_path).exists()
        reporter.report_storage_outcome.assert_called_once_with(
            "f01000", False, "timeout in state: StorageDealTransferring", data_cid=deal.data_cid
        )

    @pytest.mark.parametrize("code", [DealState.UNKNOWN.code, 99])
    @pytest.mark.asyncio
    async def test_unknown_status_never_times_out(self, lifecycle, make_deal, node, clock, stats, reporter, code):
        deal_cid, deal = await make_deal()
        node.set_deal_state(deal_cid, code)
        clock.advance(hours=2)

        outcome = await lifecycle.poll(deal_cid)

        assert outcome is DealOutcome.POLL_FAILED
        assert deal_cid in lifecycle
        assert Path(deal.file_path).exists()
        assert stats.storage_failed == 0
        reporter.report_storage_outcome.assert_not_called()


class TestPollFailures:

    @pytest.mark.asyncio
    async def test_poll_error_changes_nothing(self, lifecycle, make_deal, node, stats, reporter):
        deal_cid, deal = await make_deal()
        node.fail_next("deal_status")

        outcome = await lifecycle.poll(deal_cid)

        assert outcome is DealOutcome.POLL_FAILED
        assert deal_cid in lifecycle
        assert Path(deal.file_path).exists()
        assert stats.storage_failed == 0
        reporter.report_storage_outcome.assert_not_called()

    @pytest.mark.asyncio
    async def test_definitive_poll_error_is_still_not_a_failure(self, lifecycle, make_deal, node, stats):
        deal_cid, _ = await make_deal()
        node.fail_next("deal_status", NodeError("deal not found", category=ErrorCategory.NOT_FOUND))

        assert await lifecycle.poll(deal_cid) is DealOutcome.POLL_FAILED
        assert stats.storage_failed == 0

    @pytest.mark.asyncio
    async def test_unknown_deal_is_absent(self, lifecycle, node):
        assert await lifecycle.poll("bafynothing") is DealOutcome.ABSENT
        assert node.call_count("deal_status") == 0


class TestPollAll:

    @pytest.mark.asyncio
    async def test_removed_deal_not_polled_again(self, lifecycle, make_deal, node, stats):
        failed_cid, _ = await make_deal()
        pending_cid, _ = await make_deal("f01001")
        node.set_deal_state(failed_cid, DealState.ERROR)

        first = await lifecycle.poll_all()
        second = await lifecycle.poll_all()

        assert first.polled == 2
        assert first.count(DealOutcome.FAILED) == 1
        assert second.polled == 1
        assert node.call_count("deal_status") == 3
        assert stats.storage_failed == 1
        assert await lifecycle.poll(failed_cid) is DealOutcome.ABSENT

    @pytest.mark.asyncio
    async def test_stop_requested(self, lifecycle, make_deal):
        await make_deal()
        await make_deal("f01001")

        summary = await lifecycle.poll_all(should_stop=lambda: True)

        assert summary.polled == 0
        assert summary.stopped_early is True
        assert lifecycle.pending_count == 2
