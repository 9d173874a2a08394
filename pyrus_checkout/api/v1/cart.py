"""/v1/cart/{client_id}/{tier} - cart store written by the recommendation builder"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pyrus_checkout.api.v1.schemas import CartItemSchema, CartRequest, CartResponse
from pyrus_checkout.infrastructure.database.session import get_db
from pyrus_checkout.infrastructure.database.repositories import CartRepository

router = APIRouter()


@router.put("/cart/{client_id}/{tier}", response_model=CartResponse)
def save_cart(client_id: str, tier: str, request_body: CartRequest, db: Session = Depends(get_db)):
    """Replace the cart for a client and tier"""
    items = [item.to_domain() for item in request_body.items]
    CartRepository(db).save_cart(client_id, tier, items)
    db.commit()
    return CartResponse(client_id=client_id, tier=tier, items=request_body.items)


@router.get("/cart/{client_id}/{tier}", response_model=CartResponse)
def get_cart(client_id: str, tier: str, db: Session = Depends(get_db)):
    items = CartRepository(db).load_cart(client_id, tier)
    return CartResponse(
        client_id=client_id,
        tier=tier,
        items=[CartItemSchema.from_domain(item) for item in items],
    )


@router.delete("/cart/{client_id}/{tier}", status_code=204)
def clear_cart(client_id: str, tier: str, db: Session = Depends(get_db)):
    """Clear the cart once downstream onboarding has read it"""
    if not CartRepository(db).clear_cart(client_id, tier):
        raise HTTPException(status_code=404, detail="Cart not found")
    db.commit()
