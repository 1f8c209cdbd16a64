# -*- coding: utf-8 -*-
"""
Exchange Adapter Layer - Exceptions

Normalized error taxonomy shared by every venue adapter.

Transport and parse failures are classified at the REST boundary
(http_client.py); venue error codes are mapped by each adapter's
handle_errors() hook.
"""


class ExchangeError(Exception):
    """Base error (uncategorized venue failure)"""
    pass


class AuthenticationError(ExchangeError):
    """Missing or invalid credentials / signature"""
    pass


class PermissionDenied(AuthenticationError):
    """Credentials are valid but not allowed to perform the operation"""
    pass


class InvalidAddress(ExchangeError):
    """Malformed destination address"""
    pass


class NotSupported(ExchangeError):
    """Capability not implemented by this venue/adapter"""
    pass


class InsufficientFunds(ExchangeError):
    """Account balance too low for the operation"""
    pass


class InvalidOrder(ExchangeError):
    """Order rejected by the venue"""
    pass


class OrderNotFound(InvalidOrder):
    """Order id unknown to the venue"""
    pass


class NetworkError(ExchangeError):
    """Transport level failure"""
    pass


class DDoSProtection(NetworkError):
    """Rate limited or blocked by an anti-bot layer"""
    pass


class RequestTimeout(NetworkError):
    """Deadline exceeded on a REST call or connection wait"""
    pass


class ExchangeNotAvailable(NetworkError):
    """Transport failure or venue-reported outage/maintenance"""
    pass
