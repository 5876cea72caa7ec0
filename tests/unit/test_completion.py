"""Tests for ballot-set completion and invalidation."""

import pytest

from services.shared import (
    AlreadyVotedError,
    DuplicateCompletionError,
    IncompleteBallotError,
    ValidationError,
    VoterStatus,
)


@pytest.mark.asyncio
class TestCompletionGuard:
    """Finalizing a full ballot set, and voiding it on duplicate detection."""

    @pytest.fixture
    async def voter_id(self, service, student, device) -> str:
        return (await service.sign_in(**student(1), fingerprint=device(1))).voter_id

    async def test_complete(self, service, store, voter_id, vote_all, device, clock):
        await vote_all(voter_id)

        result = await service.completion.complete(voter_id, device(1))

        assert result.completed
        assert result.completed_at == clock()
        voter = await store.get_voter(voter_id)
        assert voter.status == VoterStatus.COMPLETED
        assert voter.completed_at == clock()

        signals = service.strategy.signals(device(1))
        for kind, value in signals.items():
            assert await store.find_completion_owner(kind, value) == voter_id

    async def test_incomplete_ballot(self, service, store, voter_id, device):
        await service.ballots.cast(voter_id, "c1", "President")

        with pytest.raises(IncompleteBallotError) as exc_info:
            await service.completion.complete(voter_id, device(1))

        assert exc_info.value.details == {"voted": 1, "required": 4}
        assert (await store.get_voter(voter_id)).status == VoterStatus.ACTIVE

    async def test_complete_twice(self, service, voter_id, vote_all, device):
        await vote_all(voter_id)
        await service.completion.complete(voter_id, device(1))

        with pytest.raises(AlreadyVotedError):
            await service.completion.complete(voter_id, device(1))

    async def test_fingerprint_required(self, service, voter_id, vote_all):
        await vote_all(voter_id)

        with pytest.raises(ValidationError):
            await service.completion.complete(voter_id, None)

    async def test_duplicate_at_completion_invalidates(
        self, service, store, student, device, vote_all
    ):
        """Test: Completing from a network another voter completed from voids the ballots.

        Flow:
        1. Student 1 signs in on 10.0.0.1, votes, completes from 10.0.0.50
        2. Student 2 signs in on 10.0.0.2, votes, completes from 10.0.0.50
        3. Verify DuplicateCompletionError with reason duplicate_network
        4. Verify student 2 is invalidated with every ballot invalid
        5. Verify the tally only counts student 1
        """
        first = (await service.sign_in(**student(1), fingerprint=device(1))).voter_id
        await vote_all(first, ("c1", "c3", "c5", "c7"))
        await service.completion.complete(first, device(1, network="10.0.0.50"))

        second = (await service.sign_in(**student(2), fingerprint=device(2))).voter_id
        await vote_all(second, ("c2", "c4", "c6", "c8"))

        with pytest.raises(DuplicateCompletionError) as exc_info:
            await service.completion.complete(second, device(2, network="10.0.0.50"))

        assert exc_info.value.details["reason"] == "duplicate_network"
        assert exc_info.value.http_status == 403

        voter = await store.get_voter(second)
        assert voter.status == VoterStatus.INVALIDATED
        assert voter.voted_positions == []
        assert voter.votes == []
        assert voter.total_votes == 0
        assert all(not b.valid for b in await store.list_ballots(second))

        tally = await service.get_tally()
        assert tally.total_valid_votes == 4
        assert {row.candidate_id: row.votes for row in tally.vote_counts["President"]} == {
            "c1": 1, "c2": 0
        }

    async def test_invalidate_is_idempotent(self, service, store, voter_id, vote_all):
        await vote_all(voter_id)

        first = await service.completion.invalidate(voter_id)
        second = await service.completion.invalidate(voter_id)

        assert first.status == second.status == VoterStatus.INVALIDATED
        assert first.voted_positions == second.voted_positions == []
        assert second.total_votes == 0
        ballots = await store.list_ballots(voter_id)
        assert len(ballots) == 4
        assert all(not b.valid for b in ballots)
        assert await store.count_valid_ballots() == {}

    async def test_revote_after_invalidation(self, service, store, voter_id, vote_all, device):
        await vote_all(voter_id)
        await service.completion.invalidate(voter_id)

        await vote_all(voter_id, ("c2", "c4", "c6", "c8"))
        await service.completion.complete(voter_id, device(1))

        voter = await store.get_voter(voter_id)
        assert voter.status == VoterStatus.COMPLETED
        assert len(await store.list_ballots(voter_id)) == 8
        assert sum((await store.count_valid_ballots()).values()) == 4

    async def test_complete_again_after_invalidating_completed_voter(
        self, service, store, voter_id, vote_all, device
    ):
        """Test: A completed voter whose ballots are voided can complete again on the same device.

        Flow:
        1. Vote every position and complete from device 1
        2. Invalidate the voter
        3. Vote every position again and complete from device 1
        4. Verify the voter is completed and still owns its completion records
        """
        await vote_all(voter_id)
        await service.completion.complete(voter_id, device(1))
        await service.completion.invalidate(voter_id)

        await vote_all(voter_id, ("c2", "c4", "c6", "c8"))
        result = await service.completion.complete(voter_id, device(1))

        assert result.completed
        assert (await store.get_voter(voter_id)).status == VoterStatus.COMPLETED
        for kind, value in service.strategy.signals(device(1)).items():
            assert await store.find_completion_owner(kind, value) == voter_id
        assert sum((await store.count_valid_ballots()).values()) == 4
