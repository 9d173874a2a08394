"""Data access layer for checkout entities"""

from typing import List, Optional
from sqlalchemy.orm import Session
from pyrus_checkout.infrastructure.database.models import CheckoutCart, ClientRecord, Settlement
from pyrus_checkout.domain.cart import parse_cart, serialize_cart_item
from pyrus_checkout.domain.models import CartItem, ClientProfile, SettlementRecord


class CartRepository:
    """Cart store: get/set/clear by client + tier"""

    def __init__(self, db: Session):
        self.db = db

    def _get_row(self, client_id: str, tier: str) -> Optional[CheckoutCart]:
        return (
            self.db.query(CheckoutCart)
            .filter(CheckoutCart.client_id == client_id, CheckoutCart.tier == tier)
            .first()
        )

    def load_cart(self, client_id: str, tier: str) -> List[CartItem]:
        """Stored cart, or an empty list when the builder never saved one"""
        row = self._get_row(client_id, tier)
        if row is None:
            return []
        return parse_cart(row.items)

    def save_cart(self, client_id: str, tier: str, items: List[CartItem]) -> None:
        """Replace the cart for this client + tier"""
        payload = [serialize_cart_item(item) for item in items]
        row = self._get_row(client_id, tier)
        if row is None:
            self.db.add(CheckoutCart(client_id=client_id, tier=tier, items=payload))
        else:
            row.items = payload
        self.db.flush()

    def clear_cart(self, client_id: str, tier: str) -> bool:
        row = self._get_row(client_id, tier)
        if row is None:
            return False
        self.db.delete(row)
        self.db.flush()
        return True


class ClientRepository:
    """Client records and settlement audit trail"""

    def __init__(self, db: Session):
        self.db = db

    def get_client(self, client_id: str) -> Optional[ClientProfile]:
        row = self.db.query(ClientRecord).filter(ClientRecord.id == client_id).first()
        if row is None:
            return None
        return ClientProfile(
            id=row.id,
            name=row.name,
            contact_email=row.contact_email,
            growth_stage=row.growth_stage,
            stripe_customer_id=row.stripe_customer_id,
        )

    def update_growth_stage(self, client_id: str, stage: str) -> None:
        """Move the client along its lifecycle"""
        row = self.db.query(ClientRecord).filter(ClientRecord.id == client_id).first()
        if row is not None:
            row.growth_stage = stage
            self.db.flush()

    def set_stripe_customer_id(self, client_id: str, customer_id: str) -> None:
        """Remember the processor customer so later checkouts reuse it"""
        row = self.db.query(ClientRecord).filter(ClientRecord.id == client_id).first()
        if row is not None:
            row.stripe_customer_id = customer_id
            self.db.flush()

    def record_settlement(self, record: SettlementRecord) -> Settlement:
        """Persist settlement for audit"""
        db_settlement = Settlement(
            client_id=record.client_id,
            tier=record.tier,
            final_amount=record.final_amount,
            recurring_amount=record.recurring_amount,
            payment_path=record.payment_path,
            coupon_code=record.coupon_code,
            processor_reference=record.processor_reference,
        )
        self.db.add(db_settlement)
        self.db.flush()  # Get ID without committing
        return db_settlement

    def get_settlements_by_client(self, client_id: str, limit: int = 10) -> List[Settlement]:
        """Fetch recent settlements for a client"""
        return (
            self.db.query(Settlement)
            .filter(Settlement.client_id == client_id)
            .order_by(Settlement.created_at.desc())
            .limit(limit)
            .all()
        )
