from core.exceptions.base import (
    CustomException,
    BadGatewayException,
    BadRequestException,
    UnauthorizedException,
    ForbiddenException,
    NotFoundException,
    ConflictException,
    ServiceUnavailableException,
    ValidationException,
)
from core.exceptions.enrollment import (
    AllocationContentionException,
    AlreadyEnrolledException,
    CohortClosedException,
    CohortFullException,
    CohortNotFoundException,
    CohortRequiredException,
    ConflictingActiveEnrollmentException,
    InvalidDiscountException,
    PaymentNotCompletedException,
    PaymentProviderException,
    PaymentSetupMissingException,
    ProgramNotFoundException,
    ProgramUnavailableException,
)

__all__ = [
    "CustomException",
    "BadGatewayException",
    "BadRequestException",
    "UnauthorizedException",
    "ForbiddenException",
    "NotFoundException",
    "ConflictException",
    "ServiceUnavailableException",
    "ValidationException",
    "AllocationContentionException",
    "AlreadyEnrolledException",
    "CohortClosedException",
    "CohortFullException",
    "CohortNotFoundException",
    "CohortRequiredException",
    "ConflictingActiveEnrollmentException",
    "InvalidDiscountException",
    "PaymentNotCompletedException",
    "PaymentProviderException",
    "PaymentSetupMissingException",
    "ProgramNotFoundException",
    "ProgramUnavailableException",
]
