from fastapi import APIRouter

from echelon.config import settings

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok", "version": settings.app.version}
