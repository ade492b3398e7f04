from fastapi import APIRouter
from .auth.login_routes import router as auth_router

router = APIRouter()


router.include_router(auth_router)
