"""GET/PUT /v1/credit-settings - store-wide credit policy"""

from fastapi import APIRouter, Depends

from coop_credit.api.dependencies import get_credit_engine
from coop_credit.api.v1.schemas import CreditSettingsSchema, CreditSettingsUpdate
from coop_credit.services.credit_engine import CreditEngine

router = APIRouter()


@router.get("/credit-settings", response_model=CreditSettingsSchema)
def get_credit_settings(engine: CreditEngine = Depends(get_credit_engine)):
    """Current settings; defaults are created on first read"""
    return CreditSettingsSchema.model_validate(engine.get_credit_settings())


@router.put("/credit-settings", response_model=CreditSettingsSchema)
def update_credit_settings(body: CreditSettingsUpdate, engine: CreditEngine = Depends(get_credit_engine)):
    fields = body.model_dump(exclude_unset=True)
    return CreditSettingsSchema.model_validate(engine.update_credit_settings(**fields))
