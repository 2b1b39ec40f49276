"""Meeting credentials and one-time join links."""

from coachflow.access.tokens import IssuedToken, JoinRedemption, TokenIssuer

__all__ = ["IssuedToken", "JoinRedemption", "TokenIssuer"]
