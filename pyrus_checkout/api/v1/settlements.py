"""GET /v1/settlements - Fetch a client's settled checkouts"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pyrus_checkout.api.v1.schemas import SettlementHistoryResponse, SettlementItem
from pyrus_checkout.infrastructure.database.session import get_db
from pyrus_checkout.infrastructure.database.repositories import ClientRepository

router = APIRouter()


@router.get("/settlements", response_model=SettlementHistoryResponse)
def get_settlement_history(
    client_id: str = Query(..., description="Client identifier"),
    db: Session = Depends(get_db),
):
    """
    Retrieve recent settlements for a client.

    Returns:
        Settlements (newest first) with amounts, payment path and coupon
    """
    settlements = ClientRepository(db).get_settlements_by_client(client_id, limit=20)

    items = [
        SettlementItem(
            settlement_id=str(s.id),
            tier=s.tier,
            final_amount=s.final_amount,
            recurring_amount=s.recurring_amount,
            payment_path=s.payment_path,
            coupon_code=s.coupon_code,
            created_at=s.created_at.isoformat(),
        )
        for s in settlements
    ]

    return SettlementHistoryResponse(client_id=client_id, settlements=items)
