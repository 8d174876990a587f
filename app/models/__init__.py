from app.models.coaching import CoachingRelationship
from app.models.discount import (
    DiscountCode,
    DiscountCodeUsage,
    DiscountScope,
    DiscountType,
    TargetKind,
)
from app.models.enrollment import Enrollment, EnrollmentStatus
from app.models.organization import AlumniDiscountType, Organization
from app.models.program import Cohort, Program, ProgramType
from app.models.squad import Squad
from app.models.user import Role, User

__all__ = [
    # Organization / people
    "Organization",
    "AlumniDiscountType",
    "User",
    "Role",
    # Programs
    "Program",
    "ProgramType",
    "Cohort",
    # Delivery units
    "Squad",
    "CoachingRelationship",
    # Enrollment
    "Enrollment",
    "EnrollmentStatus",
    # Discount
    "DiscountCode",
    "DiscountCodeUsage",
    "DiscountScope",
    "DiscountType",
    "TargetKind",
]
