"""
Consolidated status alerts.

One call turns a batch of status changes into a single notification that is
stored, pushed to the tenant's real-time channel and mailed to the tenant's
admin addresses. Delivery is best effort: a failing channel is logged and
never propagates into the monitoring sweep that raised the alert.
"""
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

import redis
from flask import current_app
from flask_mail import Message
from sqlalchemy.exc import SQLAlchemyError

from ispdiag import db, mail
from ispdiag.models import ApplicationSettings, Notification

logger = logging.getLogger(__name__)

NOTIFICATION_EVENT = 'new_notification'


class Notifier:
    """Delivery channels used by :class:`AlertingService`.

    Each method handles its own failures and reports them through logging.
    """

    def persist(self, tenant_id: int, message: str, notification_type: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def broadcast(self, tenant_id: int, event: str, payload: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def email_batch(self, tenant_id: int, subject: str, body: str) -> int:
        raise NotImplementedError


class DefaultNotifier(Notifier):
    """Database notification, Redis pub/sub broadcast and Flask-Mail email."""

    def persist(self, tenant_id, message, notification_type):
        try:
            notification = Notification(tenant_id=tenant_id, message=message, type=notification_type)
            db.session.add(notification)
            db.session.commit()
            return notification.to_dict()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to store notification for tenant {tenant_id}: {e}")
            return None

    def broadcast(self, tenant_id, event, payload):
        prefix = current_app.config.get('NOTIFICATION_CHANNEL_PREFIX', 'tenant')
        channel = f"{prefix}:{tenant_id}:notifications"
        try:
            client = redis.from_url(current_app.config['REDIS_URL'], decode_responses=True)
            client.publish(channel, json.dumps({'event': event, 'data': payload}, default=str))
            return True
        except Exception as e:
            logger.error(f"Failed to broadcast {event} on {channel}: {e}")
            return False

    def email_batch(self, tenant_id, subject, body):
        try:
            settings = ApplicationSettings.query.filter_by(tenant_id=tenant_id).first()
        except SQLAlchemyError as e:
            logger.error(f"Could not load notification settings for tenant {tenant_id}: {e}")
            return 0
        recipients = [email for email in (settings.admin_notification_emails or [])] if settings else []

        sent = 0
        for address in recipients:
            try:
                mail.send(Message(
                    subject=subject,
                    recipients=[address],
                    body=body,
                    sender=current_app.config.get('MAIL_DEFAULT_SENDER'),
                ))
                sent += 1
            except Exception as e:
                logger.error(f"Failed to send alert email to {address}: {e}")
        return sent


def _attr(entity: Any, name: str) -> Any:
    if isinstance(entity, dict):
        return entity.get(name)
    return getattr(entity, name, None)


_NAME_KEYS = {
    'Device': ('device_name',),
    'User': ('username', 'official_name'),
    'Router': ('name',),
}


def _entity_name(entity: Any, entity_type: str) -> str:
    for key in _NAME_KEYS.get(entity_type, ('device_name', 'username', 'official_name', 'name')):
        value = _attr(entity, key)
        if value:
            return value
    return 'Unknown'


def _entity_label(entity: Any, entity_type: str) -> str:
    if entity_type == 'Device':
        return _attr(entity, 'device_type') or entity_type
    return entity_type


def build_alert_message(entities: List[Any], status: str, entity_type: str = 'Device') -> str:
    label = _entity_label(entities[0], entity_type)
    if len(entities) == 1:
        entity = entities[0]
        ip_address = _attr(entity, 'ip_address')
        where = f" ({ip_address})" if ip_address else ''
        return f"ALERT: {label} {_entity_name(entity, entity_type)}{where} is now {status}."
    names = ', '.join(_entity_name(entity, entity_type) for entity in entities)
    return f"ALERT: Multiple {label} ({names}) are now {status}."


class AlertingService:
    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or DefaultNotifier()

    def send_consolidated_alert(self, entities: Iterable[Any], status: str, tenant_id: Optional[int],
                                entity_type: str = 'Device') -> Optional[Dict[str, Any]]:
        """Store, broadcast and email one notification for ``entities``.

        Returns the stored notification (or the unsaved payload when storage
        failed) and ``None`` when nothing was sent.
        """
        if not entities or not isinstance(entities, (list, tuple)):
            logger.warning('send_consolidated_alert called with empty or invalid entities array.')
            return None
        if not tenant_id:
            logger.error('Could not determine tenant for alert.')
            return None

        entities = list(entities)
        message = build_alert_message(entities, status, entity_type)
        logger.info(f"[tenant {tenant_id}] {message}")

        notification = self.notifier.persist(tenant_id, message, 'device_status')
        payload = notification or {'message': message, 'type': 'device_status'}
        self.notifier.broadcast(tenant_id, NOTIFICATION_EVENT, payload)
        self.notifier.email_batch(tenant_id, f"System Alert: {message}", message)
        return payload


# Module-level service shared by monitoring sweeps and webhooks
alerting_service = AlertingService()
