from datetime import datetime
from typing import Optional, TypedDict


class EngagementDocument(TypedDict, total=False):
    # _id doubles as the conversation id
    _id: str
    customer_id: str
    provider_id: str
    title: str
    created_at: datetime
    customer_name: Optional[str]
    provider_name: Optional[str]
