from fastapi import APIRouter, Depends, Request, Response, status

from asset_gateway.api.deps import get_object_store, get_upload_gateway
from asset_gateway.core.errors import MethodNotAllowed
from asset_gateway.schemas import HealthResponse, UploadData, UploadResponse
from asset_gateway.services.gateway import UploadGateway
from asset_gateway.services.storage import ObjectStore

router = APIRouter(tags=["uploads"])


@router.post("/", response_model=UploadResponse)
async def upload_asset(
    request: Request,
    gateway: UploadGateway = Depends(get_upload_gateway),
) -> UploadResponse:
    result = await gateway.handle(request)
    return UploadResponse(
        data=UploadData(
            bucket=result.bucket,
            file_path=result.file_path,
            public_url=result.public_url,
            size=result.size,
            mime_type=result.mime_type,
        )
    )


@router.options("/", status_code=status.HTTP_204_NO_CONTENT)
async def preflight() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.api_route("/", methods=["GET", "HEAD", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def reject_method() -> None:
    raise MethodNotAllowed()


@router.get("/healthz", response_model=HealthResponse)
async def health(store: ObjectStore = Depends(get_object_store)) -> HealthResponse:
    return HealthResponse(backend=store.backend, bucket=store.bucket)
