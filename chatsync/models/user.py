from datetime import datetime
from typing import Optional, TypedDict


class UserDocument(TypedDict, total=False):

    name: str
    email: str
    photo_url: Optional[str]
    created_at: datetime
    # absent on profiles written before verification existed
    is_verified: Optional[bool]
