from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import FileResponse

from zariya.services import documents

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("/content")
async def get_document_content(
    key: str = Query(...),
    expires: int = Query(...),
    signature: str = Query(...),
) -> FileResponse:
    try:
        path = documents.open_signed_document(key, expires, signature)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except FileNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found") from exc
    return FileResponse(path)
