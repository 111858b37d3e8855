"""Product resolution preview endpoint."""
from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import get_resolver
from ..models import ResolveRequest
from core.product_resolver import ProductResolver
from core.types import ResolvedProduct
from utils.error_handling import InvalidUrlError


router = APIRouter()


@router.post("/products/resolve", response_model=ResolvedProduct)
async def resolve_product(
    req: ResolveRequest,
    resolver: ProductResolver = Depends(get_resolver),
):
    """
    Resolve a product URL through the source cascade.

    Every step runs through the shared rate limiter, so this call competes
    with the rest of the pipeline for quota. When no step yields an adequate
    result the response has ``needs_manual_input`` set.

    Raises:
        HTTPException: 400 if the URL is malformed

    Example response:
        ```json
        {
            "url": "https://produto.mercadolivre.com.br/MLB-1234567890-fone-bluetooth-_JM",
            "name": "Fone Bluetooth",
            "price": 129.9,
            "original_price": 199.9,
            "image_url": "https://http2.mlstatic.com/D_NQ_NP_123-O.jpg",
            "store": "Mercado Livre",
            "description": null,
            "category": "Eletrônicos",
            "brand": "JBL",
            "extraction_method": "catalog-api",
            "needs_manual_input": false
        }
        ```
    """
    try:
        return await resolver.resolve_product(req.url, accept_partial=req.accept_partial)
    except InvalidUrlError as e:
        raise HTTPException(status_code=400, detail=str(e))
