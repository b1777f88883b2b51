from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

class SendMessageRequest(BaseModel):
    to: str = Field(min_length=1)
    body: str

class SendMessageResponse(BaseModel):
    status: str = "enviado"

class ErrorResponse(BaseModel):
    error: str

class StatusResponse(BaseModel):
    state: str
    hasPairingCode: bool = False
    qrUrl: Optional[str] = None
    ownAddress: Optional[str] = None
    reconnectPending: bool = False
    reconnectAttempts: int = 0
    lastCloseReason: Optional[str] = None
    catalogProducts: Optional[int] = None
    processedIds: int = 0
    relay: Dict[str, int] = Field(default_factory=dict)

class ProductsResponse(BaseModel):
    loadedAtMs: int = 0
    products: List[Dict[str, Any]] = Field(default_factory=list)
