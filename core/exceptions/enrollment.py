"""Domain errors raised while pricing, enrolling and allocating members."""

from core.exceptions.base import (
    BadGatewayException,
    BadRequestException,
    ConflictException,
    NotFoundException,
    ServiceUnavailableException,
    ValidationException,
)


class ProgramNotFoundException(NotFoundException):
    error_code = "PROGRAM_NOT_FOUND"
    message = "Program not found"


class CohortNotFoundException(NotFoundException):
    error_code = "COHORT_NOT_FOUND"
    message = "Cohort not found for this program"


class ProgramUnavailableException(BadRequestException):
    error_code = "PROGRAM_UNAVAILABLE"
    message = "This program is not available for enrollment"


class CohortRequiredException(ValidationException):
    error_code = "COHORT_REQUIRED"
    message = "A cohort must be selected for group programs"


class CohortClosedException(BadRequestException):
    error_code = "COHORT_CLOSED"
    message = "Enrollment is closed for this cohort"


class CohortFullException(BadRequestException):
    error_code = "COHORT_FULL"
    message = "This cohort is full"


class AlreadyEnrolledException(ConflictException):
    error_code = "ALREADY_ENROLLED"
    message = "You are already enrolled in this program"


class ConflictingActiveEnrollmentException(ConflictException):
    error_code = "CONFLICTING_ACTIVE_ENROLLMENT"
    message = "You already have an active program of this type"


class InvalidDiscountException(BadRequestException):
    error_code = "INVALID_DISCOUNT"
    message = "Invalid discount code"


class PaymentSetupMissingException(BadRequestException):
    error_code = "PAYMENT_SETUP_MISSING"
    message = "Payment is not configured for this program"


class PaymentNotCompletedException(BadRequestException):
    error_code = "PAYMENT_NOT_COMPLETED"
    message = "Payment not completed"


class PaymentProviderException(BadGatewayException):
    error_code = "PAYMENT_PROVIDER_ERROR"
    message = "Payment provider request failed"


class AllocationContentionException(ServiceUnavailableException):
    """Squad placement kept losing concurrent writes; the caller may retry."""

    error_code = "ALLOCATION_CONTENTION"
    message = "Squad placement is busy, please retry"
