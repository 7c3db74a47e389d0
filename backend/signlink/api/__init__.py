from fastapi import APIRouter
from signlink.api import presence

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok"}


router.include_router(presence.router)
