"""Tests for the public tally."""

import pytest


@pytest.mark.asyncio
class TestTallyAggregator:

    @pytest.fixture
    def sign_in(self, service, student, device):
        async def make(n: int) -> str:
            return (await service.sign_in(**student(n), fingerprint=device(n))).voter_id
        return make

    async def test_empty_tally_lists_every_candidate(self, service, roster):
        tally = await service.get_tally()

        assert list(tally.vote_counts) == roster.positions()
        assert tally.total_valid_votes == 0
        for position, rows in tally.vote_counts.items():
            assert [row.candidate_id for row in rows] == [c.id for c in roster.candidates(position)]
            assert all(row.votes == 0 for row in rows)

    async def test_sorted_by_votes(self, service, sign_in):
        """Test: Candidates come back most votes first.

        Flow:
        1. Three voters vote c2 for President, one votes c1
        2. Verify President rows are c2 (3) then c1 (1)
        """
        for n, candidate_id in enumerate(["c2", "c2", "c1", "c2"], start=1):
            await service.ballots.cast(await sign_in(n), candidate_id, "President")

        tally = await service.get_tally()

        assert [(r.candidate_id, r.name, r.votes) for r in tally.vote_counts["President"]] == [
            ("c2", "Tunde Lawal", 3),
            ("c1", "Ada Bello", 1),
        ]
        assert tally.total_valid_votes == 4

    async def test_ties_keep_roster_order(self, service, sign_in):
        await service.ballots.cast(await sign_in(1), "c4", "Vice President")
        await service.ballots.cast(await sign_in(2), "c3", "Vice President")

        tally = await service.get_tally()

        assert [r.candidate_id for r in tally.vote_counts["Vice President"]] == ["c3", "c4"]

    async def test_total_matches_valid_ballots(self, service, store, sign_in, vote_all):
        """Test: Vote counts sum to the number of valid ballots."""
        first = await sign_in(1)
        second = await sign_in(2)
        await vote_all(first)
        await vote_all(second, ("c2", "c4", "c6", "c8"))
        await service.completion.invalidate(second)
        await service.ballots.cast(second, "c1", "President")

        tally = await service.get_tally()

        valid = [
            ballot
            for voter_id in (first, second)
            for ballot in await store.list_ballots(voter_id)
            if ballot.valid
        ]
        assert tally.total_valid_votes == len(valid) == 5
        counted = sum(row.votes for rows in tally.vote_counts.values() for row in rows)
        assert counted == tally.total_valid_votes
        assert tally.vote_counts["President"][0].candidate_id == "c1"
        assert tally.vote_counts["President"][0].votes == 2
