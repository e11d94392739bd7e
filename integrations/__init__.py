"""
integrations — OAuth credential lifecycle for third-party tools.

Handles:
  • Authorization-URL generation (signed, time-bounded state; PKCE)
  • Callback handling (code → token exchange, grouped fan-out)
  • Fernet encryption of tokens at rest
  • Proactive, de-duplicated refresh with retry/backoff
  • Revocation / disconnect

``IntegrationService`` is the entry point; see ``integrations.service``.
"""
