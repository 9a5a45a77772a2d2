from marketchat.models.engagement import EngagementDocument
from marketchat.models.message import MessageDocument

__all__ = ["EngagementDocument", "MessageDocument"]
