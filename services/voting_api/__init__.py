"""Voting API: sign-in, ballot casting, completion and public tally."""
