"""
Shared OAuth credential for every poller.

Submodules:
  credential_manager  — single-flight refresh, degraded-state reporting
  token_store         — JSON file persistence of the current credential
  oauth_client        — token endpoint calls (authorization_code / refresh_token)

Credential placement (.env, gitignored):
  EPIC_CLIENT_ID       — OAuth client ID
  EPIC_CLIENT_SECRET   — OAuth client secret
"""
