from pydantic import BaseModel
from typing import Optional, Dict, Any

class TestConnectionOut(BaseModel):
    ok: bool
    detail: str
    meta: Optional[Dict[str, Any]] = None

class ProviderStatusOut(BaseModel):
    service_id: str
    state: str
    ip_address: Optional[str] = None
    os: Optional[str] = None

class TemplateOut(BaseModel):
    id: str
    name: str

class InstanceOut(BaseModel):
    service_id: str
    ip_address: Optional[str] = None
    state: str
