"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class RuleNotFoundException(DomainException):
    """A template is bound to the ticket but has no rule for its priority."""

    def __init__(
        self,
        ticket_id: str,
        template_id: Optional[int],
        priority: str,
        details: Optional[dict] = None
    ):
        self.ticket_id = ticket_id
        self.template_id = template_id
        self.priority = priority
        super().__init__(
            f"No SLA rule for priority '{priority}' in template {template_id} (ticket {ticket_id})",
            details or {
                "ticket_id": ticket_id,
                "template_id": template_id,
                "priority": priority,
            }
        )


class InvalidRuleDataException(DomainException):
    """An SLA rule whose response budget exceeds its solution budget."""

    def __init__(
        self,
        template_id: Optional[int],
        priority: str,
        response_minutes: int,
        solution_minutes: int,
    ):
        self.template_id = template_id
        self.priority = priority
        self.response_minutes = response_minutes
        self.solution_minutes = solution_minutes
        super().__init__(
            f"SLA rule for '{priority}' in template {template_id} has response "
            f"{response_minutes}min > solution {solution_minutes}min",
            {
                "template_id": template_id,
                "priority": priority,
                "response_minutes": response_minutes,
                "solution_minutes": solution_minutes,
            }
        )


class NotificationDeliveryException(ExternalServiceException):
    """Exception when an escalation notification could not be delivered."""

    def __init__(self, channel: str, message: str, details: Optional[dict] = None):
        super().__init__(f"Notification ({channel})", message, details)


class ScanExecutionException(ApplicationException):
    """A whole scan run failed before it could process tickets."""

    def __init__(self, run_id: str, message: str, details: Optional[dict] = None):
        self.run_id = run_id
        super().__init__(f"Scan {run_id} failed: {message}", details or {"run_id": run_id})
