from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.core.db import get_db
from vpshub.core.security import Principal
from vpshub.api.deps import http_error, require_reseller
from vpshub.services.errors import OrchestratorError
from vpshub.services.pricing import get_reseller_priced_catalog
from vpshub.schemas.wallet import CatalogOut, CatalogProduct

router = APIRouter()


@router.get("/catalog", response_model=CatalogOut)
async def catalog(db: AsyncSession = Depends(get_db), reseller: Principal = Depends(require_reseller)):
    try:
        c = await get_reseller_priced_catalog(db, reseller.numeric_id)
    except OrchestratorError as e:
        raise http_error(e)
    return CatalogOut(
        reseller_id=c.reseller_id,
        currency=c.currency,
        products=[
            CatalogProduct(
                stock_id=p.stock_id,
                name=p.name,
                description=p.description,
                server_type=p.server_type,
                tags=p.tags,
                memory_options=p.memory_options,
            )
            for p in c.products
        ],
    )
