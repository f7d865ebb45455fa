"""
Azure Service Bus Service for Attachment Notifications

This service publishes attachment events (file added / file deleted) to an
Azure Service Bus queue. The notification service consuming the queue
renders and delivers them to the subscribed users.
"""

from azure.servicebus.aio import ServiceBusClient
from azure.servicebus import ServiceBusMessage
from attachments.core.config import Settings, settings as default_settings
from attachments.core.exceptions import NotificationDeliveryFailure
from datetime import timedelta
from typing import Any, Dict, Optional
import json
import logging
import uuid

logger = logging.getLogger(__name__)


class ServiceBusNotifier:
    """Publisher for attachment notification events to Service Bus queue."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or default_settings
        self.connection_string = settings.SERVICE_BUS_CONNECTION_STRING
        self.queue_name = settings.NOTIFICATIONS_QUEUE_NAME

    async def publish(self, event: Dict[str, Any]) -> None:
        """
        Publish one notification event.

        Args:
            event: payload built by build_notification_event (type, userIds,
                entityType, entityId, fileName, actor, metadata, timestamp)

        Raises:
            NotificationDeliveryFailure: the message could not be sent
        """
        try:
            async with ServiceBusClient.from_connection_string(
                self.connection_string
            ) as client:
                sender = client.get_queue_sender(self.queue_name)

                async with sender:
                    message = ServiceBusMessage(
                        body=json.dumps(event, default=str),
                        message_id=f"{event['type']}-{uuid.uuid4().hex}",
                        time_to_live=timedelta(days=7)  # Message expires after 7 days
                    )

                    await sender.send_messages(message)

                    logger.info(
                        f"Published {event['type']} for {event['entityType']}/{event['entityId']} "
                        f"to {len(event['userIds'])} users (file: {event['fileName']})"
                    )

        except Exception as e:
            raise NotificationDeliveryFailure(
                f"Failed to publish {event.get('type')} to Service Bus: {str(e)}"
            ) from e
