from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

class ServerActionCreate(BaseModel):
    order_id: int
    action: str = Field(pattern="^(start|stop|restart|format|changepassword|reinstall)$")
    payload: Dict[str, Any] = {}

class ServerActionProcess(BaseModel):
    decision: str = Field(pattern="^(approve|reject)$")
    admin_notes: Optional[str] = Field(default=None, max_length=2000)

class ServerActionOut(BaseModel):
    id: int
    order_id: int
    user_id: int
    action: str
    status: str
    payload: Dict[str, Any]
    order_snapshot: Dict[str, Any]
    requested_at: datetime
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    admin_notes: Optional[str] = None

class ServerActionList(BaseModel):
    items: List[ServerActionOut]
    total: int
