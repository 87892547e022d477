"""Ranked-list snapshots of discovery surfaces and their positional diffs."""
