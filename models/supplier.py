from pydantic import BaseModel
from typing import Optional


class Supplier(BaseModel):
    """
    A registered supplier from the supplier master list.
    Only active suppliers can be referenced by new orders.
    """
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    active: bool = True
