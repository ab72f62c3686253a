import json
import logging
import urllib.request
from typing import Iterable, List

from .models import AlertMQTTConfig, AlertWebhookConfig, AlertsConfig, NotificationItem

try:
    import paho.mqtt.client as mqtt  # type: ignore
except ImportError:  # pragma: no cover
    mqtt = None

logger = logging.getLogger(__name__)

_mqtt_warned = False


def _payload(item: NotificationItem) -> dict:
    return {
        "id": item.id,
        "type": item.type.value,
        "priority": item.priority.label,
        "title": item.title,
        "message": item.message,
        "created_at": item.created_at.isoformat(),
        "context": item.context.as_dict() if item.context else None,
    }


def _send_webhook(cfg: AlertWebhookConfig, item: NotificationItem) -> None:
    """Send a webhook alert for a notification.

    Args:
        cfg: Webhook settings
        item: The notification to send as alert
    """
    data = json.dumps(_payload(item)).encode("utf-8")

    headers = {"Content-Type": "application/json"}
    headers.update(cfg.headers or {})

    req = urllib.request.Request(cfg.url, data=data, method=cfg.method)
    for k, v in headers.items():
        req.add_header(k, v)

    try:
        with urllib.request.urlopen(req, timeout=5):
            pass
    except Exception as e:  # pragma: no cover
        logger.warning(f"Webhook alert failed for {item.id}: {e}")


def _send_mqtt(cfg: AlertMQTTConfig, item: NotificationItem) -> None:
    """Publish an MQTT alert for a notification.

    Args:
        cfg: MQTT settings
        item: The notification to send as alert
    """
    global _mqtt_warned
    if mqtt is None:
        if not _mqtt_warned:
            logger.warning(
                "MQTT alert configured but paho-mqtt is not installed. "
                "Install with: pip install 'gearwatch[alerts]'"
            )
            _mqtt_warned = True
        return

    text = json.dumps(_payload(item))

    try:
        client = mqtt.Client()
        if cfg.username is not None:
            client.username_pw_set(cfg.username, cfg.password or "")
        client.connect(cfg.host, cfg.port, 60)
        client.loop_start()
        client.publish(cfg.topic, text)
        client.loop_stop()
        client.disconnect()
    except Exception as e:  # pragma: no cover
        logger.warning(f"MQTT alert failed for {item.id}: {e}")


def select_alertable(cfg: AlertsConfig, items: Iterable[NotificationItem]) -> List[NotificationItem]:
    return [n for n in items if n.priority >= cfg.min_priority]


def send_alerts(cfg: AlertsConfig, items: Iterable[NotificationItem]) -> None:
    """Send alerts for notifications that just appeared.

    Dispatches each notification at or above the configured minimum
    priority to every configured channel (webhook, MQTT). Delivery
    failures are logged and never interrupt a refresh.

    Args:
        cfg: Alert settings
        items: Newly raised notifications
    """
    for item in select_alertable(cfg, items):
        if cfg.webhook is not None:
            _send_webhook(cfg.webhook, item)
        if cfg.mqtt is not None:
            _send_mqtt(cfg.mqtt, item)
