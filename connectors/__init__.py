"""
connectors — credential custody for external integrations.

Provides:
  • OAuth2 Authorization-Code + PKCE flows (start, callback, refresh)
  • AES-256-GCM envelope encryption of secrets at rest
  • An append-only secret store and a connection ledger
  • A combined health report over OAuth, API-key and CLI integrations

Each OAuth provider (Slack, Linear, …) is a subclass of BaseConnector.
"""
