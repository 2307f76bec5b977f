"""
Hub: single sign-on gateway for the product family.

A user signs in once at the Hub and the session token is written to a cookie
scoped to the parent domain, so every sibling subdomain application can read
it without asking for credentials again.

Packages:
- auth: session storage, Auth Service client, guard, access resolver, route gate
- directory: Directory Service client (profiles, memberships, applications)
- pages: screen endpoints driven by the guard and the route gate
"""

__version__ = "1.0.0"
