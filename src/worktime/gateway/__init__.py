"""Gateway to the hosted backend (auth and timesheet records)."""

from worktime.gateway.base import AuthenticationError, Gateway, GatewayError
from worktime.gateway.models import Actor, AuthSession, TimesheetRecord
from worktime.gateway.rest import RestGateway

__all__ = [
    "Actor",
    "AuthSession",
    "AuthenticationError",
    "Gateway",
    "GatewayError",
    "RestGateway",
    "TimesheetRecord",
]
