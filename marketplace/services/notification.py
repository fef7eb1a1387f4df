"""
Freelance Escrow Marketplace
Notification Service.

Central service for publishing and querying in-app notifications. The
lifecycle services call :meth:`NotificationService.notify` *after* their
transition has committed; a failure here is logged and swallowed so it can
never undo a committed transition.
"""

import logging
from datetime import datetime, timezone

from marketplace.auth import Actor
from marketplace.core.exceptions import NotFoundError, UnauthorizedError
from marketplace.models import db
from marketplace.models.notification import Notification

logger = logging.getLogger(__name__)

# Human-readable titles keyed by event kind
_TITLES = {
    "proposal_submitted": "New proposal on your project",
    "counter_offer": "New counter-offer",
    "proposal_accepted": "Your proposal was accepted",
    "proposal_rejected": "Your proposal was not selected",
    "proposal_withdrawn": "A proposal was withdrawn",
    "payment_submitted": "Payment proof awaiting verification",
    "escrow_verified": "Escrow verified, contact details shared",
    "release_requested": "Escrow release requested",
    "payment_released": "Escrow released",
    "escrow_disputed": "Escrow under dispute",
    "escrow_refunded": "Escrow refunded",
    "project_in_review": "Project submitted for review",
    "project_cancelled": "Project cancelled",
    "deliverable_submitted": "New deliverable submitted",
    "deliverable_approved": "Deliverable approved",
    "deliverable_revision_requested": "Revision requested on a deliverable",
    "deliverable_rejected": "Deliverable rejected",
    "milestone_completed": "Milestone marked complete",
    "milestone_approved": "Milestone approved",
    "milestone_changes_requested": "Changes requested on a milestone",
    "project_invitation": "You were invited to bid on a project",
    "invitation_accepted": "Your invitation was accepted",
    "invitation_declined": "Your invitation was declined",
    "quote_requested": "New quote request",
    "quote_received": "A freelancer sent you a quote",
    "quote_declined": "Your quote request was declined",
    "quote_withdrawn": "A quote request was withdrawn",
}


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Publish ───────────────────────────────────────────────────────────

    @staticmethod
    def notify(user_id, event_kind, payload=None):
        """
        Best-effort delivery of one notification.

        Returns:
            The created Notification, or None when delivery failed.
        """
        if user_id is None:
            return None
        payload = dict(payload or {})
        notif = Notification(
            user_id=user_id,
            event_kind=event_kind,
            title=_TITLES.get(event_kind, event_kind.replace("_", " ").capitalize()),
            payload=payload,
            project_id=payload.get("project_id"),
        )
        try:
            db.session.add(notif)
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.warning(
                "Notification delivery failed for user %s (%s)", user_id, event_kind,
                exc_info=True, extra={"event_kind": event_kind},
            )
            return None
        logger.debug("Notified user %s: %s", user_id, event_kind, extra={"event_kind": event_kind})
        return notif

    @staticmethod
    def notify_many(user_ids, event_kind, payload=None):
        """Send the same event to several users, skipping None and duplicates."""
        sent = []
        for uid in dict.fromkeys(u for u in user_ids if u is not None):
            notif = NotificationService.notify(uid, event_kind, payload)
            if notif is not None:
                sent.append(notif)
        return sent

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a user, newest first.

        Returns:
            (items, total)
        """
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, actor: Actor):
        """Mark a single notification as read. Only its recipient may do so."""
        notif = db.session.get(Notification, notification_id)
        if notif is None:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        if notif.user_id != actor.id:
            raise UnauthorizedError(
                "Only the recipient can mark this notification as read",
                actor_id=actor.id, actor_role=actor.role,
                entity="Notification", entity_id=notification_id,
            )
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all notifications for a user as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count
