"""
Auth Service package for the Portico Access Layer.

Owns user accounts and the tokens issued for them:

- app.main: Application entrypoint that wires routes and lifecycle.
- app.models: User records and request schemas.
- app.store: The user store contract and its in-process implementation.
- app.security: bcrypt password hashing and JWT issuance/verification.
- app.services: Account business rules (login lockout, refresh token
  lists, admin user management).

Design notes:
- Keep the package import side-effects minimal; module import must not
  perform network calls. All IO should happen in route handlers or
  explicit startup hooks.
- Use the shared/ utilities for logging, metrics, rate limiting and errors.
"""
