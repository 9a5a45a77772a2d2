from typing import Literal

from pydantic import BaseModel


class ChangeEvent(BaseModel):
    """Push-channel notification that a message row changed.

    Carries only enough identity to route it; consumers re-read the store.
    """

    kind: Literal["insert", "update"]
    conversation_id: str
    receiver_id: str
