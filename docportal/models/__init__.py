from docportal.core.database import Base
from docportal.models.identities import Identity, PasswordResetToken
from docportal.models.records import Record

__all__ = [
    "Base",
    "Identity",
    "PasswordResetToken",
    "Record",
]
