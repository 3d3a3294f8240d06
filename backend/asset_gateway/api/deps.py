from fastapi import Depends, Request

from asset_gateway.core.config import Settings, get_settings
from asset_gateway.services.gateway import UploadGateway
from asset_gateway.services.storage import ObjectStore


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def get_upload_gateway(
    store: ObjectStore = Depends(get_object_store),
    settings: Settings = Depends(get_settings),
) -> UploadGateway:
    return UploadGateway(store, settings)
