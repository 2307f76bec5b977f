"""
Authentication Package

This package holds the cross-domain single sign-on core of the Hub.

Modules:
- storage: cookie-backed session store shared across the parent domain
- client: Auth Service client, session model and auth event stream
- resolver: access verdicts from profile, membership and fleet facts
- guard: per-request session bootstrap and auth state machine
- gate: maps auth state and requested screen onto a destination
- redirects: return-target allow-list
- validation: password and PIN rules
- errors: error taxonomy and provider error classification
- routes: JSON auth API (/auth/login, /auth/callback, ...)

The sign-in flow:
1. A page request builds a session store from the request cookies
2. The guard loads or refreshes the stored session
3. For a signed-in subject the resolver decides allow / deny / must-reset / external
4. The gate turns the resulting context into a screen or a redirect
5. Pending cookie writes are applied to the response
"""
