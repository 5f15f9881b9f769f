from .errors import (
    ConflictBlocked, EngineError, ErrorCode, NotFoundError, PartialDeletionError,
    ScopeResolutionError, ValidationError,
)
from .schema_graph import (
    DELETION_ORDER, EDGES, ENTITIES, IMPORT_ORDER, ROOTS, check_order,
    deletion_order, import_order,
)
from .resolver import NaturalKeyResolver, Resolution
from .upsert import (
    UNSET, EnrollmentBatchResult, EnrollmentOutcome, Term, UpsertResult,
    assign_teacher, auto_assign_teachers, enroll_in_course, enroll_students, ensure_academic_year,
    ensure_enrollment, ensure_offering, record_retake, unassign_teacher,
)
from .eligibility import eligible_students, is_eligible
from .enrollment import (
    AutoEnrollmentResult, BulkEnrollmentResult, auto_enroll_for_semester,
    bulk_enroll_for_semester, course_enrollments, promote_student,
)
from .importer import BulkImporter, ImportResult, import_csv, import_table, import_tables
from .deletion import (
    CascadeDeleter, DeleteMode, DeletionResult, delete, dependents, force_delete,
    safe_delete,
)
