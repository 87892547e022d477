"""
The five recurring jobs.

  artifact_sync          — bulk links lookups over every mirrored artifact
  author_sync            — profile lookups over every mirrored author
  catalog_discovery      — author pages → artifacts the mirror does not know yet
  discovery_tracker      — ranked discovery panels → ADDED/REMOVED/MOVED events
  player_count_sampler   — player counts on 10-minute wall-clock boundaries
"""
