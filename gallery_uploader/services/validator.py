"""
Validator Service - Single Responsibility: pre-flight acceptance checks.

Checks run in order and the first failure is the rejection reason:
1. MIME type family (e.g. image/*)
2. Size limit
3. Supported exact types (skipped when the policy lists none)
"""
from typing import Iterable, List, Optional
import logging

from ..errors import ValidationRejected
from ..models import FileDescriptor, UploadItem, ValidationPolicy

logger = logging.getLogger(__name__)


class ValidatorService:
    """Validates file descriptors against a ValidationPolicy."""

    def __init__(self, policy: Optional[ValidationPolicy] = None):
        self._policy = policy or ValidationPolicy()

    @property
    def policy(self) -> ValidationPolicy:
        return self._policy

    def check(self, descriptor: FileDescriptor) -> None:
        """Raise ValidationRejected if the file is not acceptable."""
        policy = self._policy
        mime_type = (descriptor.mime_type or "").lower()

        if not any(mime_type.startswith(prefix) for prefix in policy.accepted_mime_prefixes):
            raise ValidationRejected(descriptor.name, "Only image files are allowed")

        if descriptor.size > policy.max_bytes:
            max_mb = policy.max_bytes / (1024 * 1024)
            raise ValidationRejected(descriptor.name, f"File too large (max. {max_mb:g}MB)")

        if policy.supported_types and mime_type not in policy.supported_types:
            raise ValidationRejected(descriptor.name, f"File type not supported: {mime_type}")

    def validate(self, descriptor: FileDescriptor) -> Optional[str]:
        """Return the rejection reason, or None when accepted."""
        try:
            self.check(descriptor)
        except ValidationRejected as e:
            logger.info(f"[validator] Rejected {descriptor.name}: {e.reason}")
            return e.reason
        return None

    def build_items(
        self,
        descriptors: Iterable[FileDescriptor],
        category: str = "general",
    ) -> List[UploadItem]:
        """
        Wrap descriptors into UploadItems, keeping input order.

        Rejected files become FAILED items so they show up in the same list.
        """
        items: List[UploadItem] = []
        for descriptor in descriptors:
            reason = self.validate(descriptor)
            if reason is None:
                items.append(UploadItem(payload=descriptor, category=category))
            else:
                items.append(UploadItem.rejected(descriptor, reason, category=category))
        return items
