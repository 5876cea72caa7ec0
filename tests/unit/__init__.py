"""Unit tests for the voter-integrity core."""
