"""Error taxonomy shared by the provisioning services and the HTTP layer.

Every error carries a stable ``kind`` that clients can switch on and a
human-readable ``message``. The HTTP layer maps ``status_code`` directly.
"""

from fastapi import status


class PortalError(Exception):
    kind = "error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Unexpected error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PortalError):
    kind = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"


class AuthenticationError(PortalError):
    kind = "authentication_error"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authenticated"


class AuthorizationError(PortalError):
    kind = "authorization_error"
    status_code = status.HTTP_403_FORBIDDEN
    # Never say why: the reason would leak roles and tenancy of other accounts.
    default_message = "You are not allowed to perform this operation"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__()
        self.reason = reason


class NotFoundError(PortalError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class ConflictError(PortalError):
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource conflict"


class UpstreamError(PortalError):
    kind = "upstream_error"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "An upstream service failed"


class CascadeError(PortalError):
    kind = "cascade_error"
    default_message = "A cleanup step failed after the operation completed"


class DuplicateEmail(ConflictError):
    kind = "duplicate_email"
    default_message = "This email address is already used by another account"


class WeakPassword(ValidationError):
    kind = "weak_password"
    default_message = "The password is too weak"


class InvalidEmail(ValidationError):
    kind = "invalid_email"
    default_message = "Invalid email address"


class WrongCurrentPassword(ValidationError):
    kind = "wrong_current_password"
    default_message = "The current password is incorrect"


class InvalidOrExpiredToken(AuthenticationError):
    kind = "invalid_or_expired_token"
    default_message = "Invalid or expired token"


class AccountNotFound(NotFoundError):
    kind = "account_not_found"
    default_message = "Account not found"


class DistributorNotFound(NotFoundError):
    kind = "distributor_not_found"
    default_message = "Distributor not found"


class InvitationNotFound(NotFoundError):
    kind = "invitation_not_found"
    default_message = "Invitation not found"


class InvitationExpired(ConflictError):
    kind = "invitation_expired"
    default_message = "This invitation has expired"


class InvitationAlreadyUsed(ConflictError):
    kind = "invitation_already_used"
    default_message = "This invitation has already been used"


class LastOrganizationAdmin(ConflictError):
    kind = "last_organization_admin"
    default_message = "An organization must keep at least one administrator"


class IdentityDeletionFailed(UpstreamError):
    kind = "identity_deletion_failed"
    default_message = "The identity could not be deleted; the account was kept"


class NotificationFailed(UpstreamError):
    kind = "notification_failed"
    default_message = "The notification could not be sent"
