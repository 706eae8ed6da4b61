from typing import Optional

from pydantic import BaseModel


class DropResult(BaseModel):
    draggable_id: str
    source: Optional[str] = None
    # None when the card was dropped outside every column
    destination: Optional[str] = None
