"""
Document store contract and its SQLite implementation.

Keyed collections (``artifacts``, ``authors``, ``discovery_current``) live in
the ``documents`` table; append-only sinks (changelogs, events, samples,
job runs) live in ``appended_documents``.
"""
