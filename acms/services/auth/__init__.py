from .token_verifier import AuthenticationError, TokenVerifier

__all__ = ["AuthenticationError", "TokenVerifier"]
