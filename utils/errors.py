"""
Typed Exception Classes for the Super Token Scorer

This module provides specific exception types for validation, provider
degradation, circuit breaker logic and cache failures throughout the
scoring engine.
"""


class TokenScorerError(Exception):
    """Base exception for all scorer errors"""
    pass


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationError(TokenScorerError):
    """Input validation failures (never retried)"""
    pass


class InvalidTokenAddressError(ValidationError):
    """Token address is not a base58 encoded 32-byte public key"""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Invalid Solana token address: {address!r}")


# ============================================================================
# Network & API Exceptions
# ============================================================================

class NetworkError(TokenScorerError):
    """Base exception for network-related errors"""
    pass


class RPCError(NetworkError):
    """RPC endpoint failures"""
    pass


class ProviderUnavailableError(NetworkError):
    """Third-party data provider returned an error, timed out or sent garbage"""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider} unavailable: {reason}")


class APIRateLimitError(ProviderUnavailableError):
    """API rate limit exceeded"""

    def __init__(self, provider: str):
        super().__init__(provider, "rate limited (HTTP 429)")


# ============================================================================
# Resilience Exceptions
# ============================================================================

class CircuitOpenError(TokenScorerError):
    """Circuit breaker is open, call rejected without I/O"""

    def __init__(self, name: str, retry_in: float = 0.0):
        self.name = name
        self.retry_in = retry_in
        super().__init__(f"Circuit '{name}' is open (retry in {retry_in:.1f}s)")


# ============================================================================
# Analysis Exceptions
# ============================================================================

class AnalysisError(TokenScorerError):
    """Analysis pipeline failed and no cached result was available"""
    pass


# ============================================================================
# Storage Exceptions
# ============================================================================

class CacheError(TokenScorerError):
    """Fast-path cache operation failed"""
    pass


class DatabaseError(TokenScorerError):
    """Durable store operation failed"""
    pass


# ============================================================================
# Configuration Exceptions
# ============================================================================

class ConfigurationError(TokenScorerError):
    """Invalid or missing configuration"""
    pass
