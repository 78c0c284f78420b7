"""
Delivery of committed notifications to outside channels.

The dispatcher copies stored notification rows to sinks such as a webhook
gateway, retrying with backoff, without ever touching the transition that
produced them.
"""

from civic_requests.notify.dispatcher import LogSink, NotificationDispatcher, NotificationSink
from civic_requests.notify.retry import RetryConfig, retry_with_backoff
from civic_requests.notify.webhook import WebhookConfig, WebhookSink

__all__ = [
    "LogSink",
    "NotificationDispatcher",
    "NotificationSink",
    "RetryConfig",
    "WebhookConfig",
    "WebhookSink",
    "retry_with_backoff",
]
