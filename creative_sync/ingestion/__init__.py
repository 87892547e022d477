"""
Ingestion layer — platform API fetchers and record normalization.

Submodules:
  epic_client   — links, profiles, creator-page and discovery endpoints (httpx)
  normalize     — API payloads → entity-record updates
"""
