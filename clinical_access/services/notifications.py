"""Patient and professional notification hooks.

Delivery belongs to an external messaging service; this module defines
the calls the workflow makes. Notifications are best-effort: a failed
delivery is logged and never fails the action that triggered it.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable

from clinical_access.core.logging import mask_ci
from clinical_access.models.access_request import AccessRequest
from clinical_access.policies.models import AccessContext

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Outbound notifications for the access workflow."""

    @abstractmethod
    async def new_access_request(self, request: AccessRequest) -> None:
        """Tell the patient a professional is asking for access."""
        pass

    @abstractmethod
    async def emergency_access(self, context: AccessContext, policy_id: str) -> None:
        """Tell the patient an emergency override was used."""
        pass

    @abstractmethod
    async def request_decided(self, request: AccessRequest) -> None:
        """Tell the professional the patient approved or denied."""
        pass

    @abstractmethod
    async def info_requested(self, request: AccessRequest, question: str) -> None:
        """Relay the patient's question to the professional."""
        pass


class LoggingNotifier(Notifier):
    """Notifier that only writes log lines. Used until a channel is wired."""

    async def new_access_request(self, request: AccessRequest) -> None:
        logger.info(
            "Notify patient %s: professional %s requests access (urgency %s, request %s)",
            mask_ci(request.patient_id),
            request.professional_id,
            request.urgency,
            request.id,
        )

    async def emergency_access(self, context: AccessContext, policy_id: str) -> None:
        logger.info(
            "Notify patient %s: emergency access by %s via policy %s",
            mask_ci(context.patient_id),
            context.professional_id,
            policy_id,
        )

    async def request_decided(self, request: AccessRequest) -> None:
        logger.info(
            "Notify professional %s: request %s is %s",
            request.professional_id,
            request.id,
            request.status,
        )

    async def info_requested(self, request: AccessRequest, question: str) -> None:
        logger.info(
            "Notify professional %s: patient asked for more information on request %s",
            request.professional_id,
            request.id,
        )


async def deliver(notification: Awaitable[None], description: str) -> bool:
    """Await a notification, logging instead of raising on failure.

    Returns:
        True if delivered, False if the notifier failed
    """
    try:
        await notification
    except Exception:
        logger.warning("Notification failed: %s", description, exc_info=True)
        return False
    return True
