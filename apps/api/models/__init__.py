"""Models package."""

from .credential import CredentialRecord
