"""Direct and group chat messages."""

from .models import Attachments, GroupDelivery, Message, MessageSnapshot

__all__ = ["Attachments", "GroupDelivery", "Message", "MessageSnapshot"]
