from fastapi import APIRouter, Query, Request

from app.services import dispatcher, registry

router = APIRouter()


@router.get("")
async def operations_list(family: str | None = Query(None)):
    """Operation names, credit costs and usage. Anonymous."""
    return registry.describe(family)


@router.post("")
async def operations_run(
    request: Request,
    operation: str | None = Query(None),
    type_: str | None = Query(None, alias="type"),
):
    """Run one metered operation; the response is the produced file or a JSON result."""
    return await dispatcher.dispatch(operation or type_, request)
