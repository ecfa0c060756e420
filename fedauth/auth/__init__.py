"""
Federated-login callback.

Design goals:
- One authorization-code callback path (Google -> Supabase-style auth backend).
- Session negotiation is a plain function; response construction happens once.
- Cookie-based session (HttpOnly, Secure) attached to the response that is returned.
"""
