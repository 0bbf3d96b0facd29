"""
Request dependencies: caller identity and service lookup
"""
from fastapi import HTTPException, Request, status

from ..services import ChunkUploadCoordinator, MergeEngine


def get_current_user_id(request: Request) -> str:
    """
    Identifier of the logged-in user.

    The login service stores it in the signed cookie session; the upload
    API never takes an owner from the request body.
    """
    user_id = request.session.get("user_id")
    if user_id is None or str(user_id) == "":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required to upload files",
        )
    return str(user_id)


def get_coordinator(request: Request) -> ChunkUploadCoordinator:
    return request.app.state.coordinator


def get_merge_engine(request: Request) -> MergeEngine:
    return request.app.state.merge_engine
