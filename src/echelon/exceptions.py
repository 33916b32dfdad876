from typing import Any, Optional


class EchelonError(Exception):
    """Base exception for Echelon errors."""
    pass

class ConfigError(EchelonError):
    """Configuration loading specific errors."""
    pass

class DataSourceError(EchelonError):
    """Persistence read/write failures."""
    pass


class HierarchyError(EchelonError):
    """
    Base for hierarchy and access-control failures.
    `code` is stable and safe to return to clients; `details` names the
    conflicting unit/user/assignment so the caller can correct the input.
    """

    code = "hierarchy_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.details: dict[str, Any] = details

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "detail": str(self), **({"context": self.details} if self.details else {})}


# --- Lookups -----------------------------------------------------------------
class NotFoundError(HierarchyError):
    code = "not_found"

class UnitNotFound(NotFoundError):
    code = "unit_not_found"

    def __init__(self, unit_id: Optional[int]):
        super().__init__(f"Unit {unit_id} does not exist", unit_id=unit_id)

class UserNotFound(NotFoundError):
    code = "user_not_found"

    def __init__(self, user_id: Optional[int]):
        super().__init__(f"User {user_id} does not exist", user_id=user_id)

class AssignmentNotFound(NotFoundError):
    code = "assignment_not_found"

    def __init__(self, assignment_id: Optional[int], user_id: Optional[int] = None, unit_id: Optional[int] = None):
        target = f"assignment {assignment_id}" if assignment_id is not None else f"assignment to unit {unit_id}"
        super().__init__(
            f"Active {target} not found for user {user_id}",
            assignment_id=assignment_id,
            user_id=user_id,
            unit_id=unit_id,
        )


# --- Data integrity (invariant already broken in storage) -------------------
class IntegrityFault(HierarchyError):
    code = "integrity_fault"

class CycleDetected(IntegrityFault):
    code = "cycle_detected"

    def __init__(self, unit_id: int, path: list[int]):
        super().__init__(f"Parent cycle reached from unit {unit_id}", unit_id=unit_id, path=path)


# --- Mutation validation (recoverable, reported to the caller) --------------
class MutationRejected(HierarchyError):
    code = "mutation_rejected"

class CycleWouldForm(MutationRejected):
    code = "cycle_would_form"

class InvalidParent(MutationRejected):
    code = "invalid_parent"

class InvalidLevelOrdering(InvalidParent):
    code = "invalid_level_ordering"

class CycleAndLevelViolation(CycleWouldForm, InvalidLevelOrdering):
    """Proposed parent is a descendant and also not a higher echelon."""
    code = "cycle_would_form"

class InvalidUnitLevel(MutationRejected):
    code = "invalid_unit_level"

class InvalidUnitName(MutationRejected):
    code = "invalid_unit_name"

class SelfParent(MutationRejected):
    code = "self_parent"

class NoPrimaryAssignment(MutationRejected):
    code = "no_primary_assignment"

class MultiplePrimaryAssignments(MutationRejected):
    code = "multiple_primary_assignments"

class DuplicateActiveAssignment(MutationRejected):
    code = "duplicate_active_assignment"

class CannotRemovePrimary(MutationRejected):
    code = "cannot_remove_primary"

class InvalidLeadershipRole(MutationRejected):
    code = "invalid_leadership_role"

class UnitHasDependents(MutationRejected):
    code = "unit_has_dependents"


# --- Authorization -----------------------------------------------------------
class AccessDenied(HierarchyError):
    """
    Raised when an authorization predicate evaluates false.
    Details are kept for logs only and never rendered to the client.
    """

    code = "access_denied"

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "detail": "Access denied"}
