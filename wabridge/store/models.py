from dataclasses import dataclass, field
from typing import Optional, Tuple

from wabridge.utils.time import now_ms


@dataclass(frozen=True)
class InboundMessage:
    # Network-assigned; unique per delivery attempt, not across reconnects
    id: str
    sender: str
    text: str
    participant: Optional[str] = None
    to: Optional[str] = None
    from_me: bool = False
    received_at_ms: int = field(default_factory=now_ms)


@dataclass
class MessageRecord:
    """Row shape of the `messages` table."""
    whatsapp_from: str
    whatsapp_to: str
    texto: str
    enviado_por_bot: bool = False

    def to_row(self) -> dict:
        return {
            "whatsapp_from": self.whatsapp_from,
            "whatsapp_to": self.whatsapp_to,
            "texto": self.texto,
            "enviado_por_bot": bool(self.enviado_por_bot),
        }


PRODUCT_COLUMNS = ("id", "nombre", "descripcion", "precio", "tamano", "foto_url", "categoria")


@dataclass(frozen=True)
class Product:
    id: object
    nombre: str = ""
    descripcion: Optional[str] = None
    precio: Optional[float] = None
    tamano: Optional[str] = None
    foto_url: Optional[str] = None
    categoria: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "Product":
        precio = row.get("precio")
        try:
            precio = float(precio) if precio is not None else None
        except (TypeError, ValueError):
            precio = None
        return cls(
            id=row.get("id"),
            nombre=row.get("nombre") or "",
            descripcion=row.get("descripcion"),
            precio=precio,
            tamano=row.get("tamano"),
            foto_url=row.get("foto_url"),
            categoria=row.get("categoria"),
        )

    def to_dict(self) -> dict:
        return {c: getattr(self, c) for c in PRODUCT_COLUMNS}


@dataclass(frozen=True)
class CatalogSnapshot:
    products: Tuple[Product, ...] = ()
    loaded_at_ms: int = 0

    def __len__(self) -> int:
        return len(self.products)
