# MIT License
# Copyright (c) 2025 Hashborn

"""
Distribution error taxonomy.

Configuration errors abort construction. Authorization, accounting and
lifecycle errors are reported to the caller and leave state unchanged.
"""

from protocol.types.common import ErrorCode, ProtocolError


class DistributionError(ProtocolError):
    """Base error carrying a machine-readable code."""

    def __init__(self, code: ErrorCode, message: str = ""):
        self.code = code
        self.message = message or code.value
        super().__init__(f"{code.value}: {self.message}")


class ConfigurationError(DistributionError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.INVALID_CONFIGURATION, message)


class AuthorizationError(DistributionError):
    pass


class AccountingError(DistributionError):
    pass


class LifecycleError(DistributionError):
    pass


class ReentrancyError(DistributionError):
    def __init__(self, message: str = "Nested call into the distribution ledger"):
        super().__init__(ErrorCode.REENTRANT_CALL, message)
