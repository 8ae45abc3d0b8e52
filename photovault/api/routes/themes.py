from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from photovault.db.session import get_db
from photovault.schemas.generation import ThemeOut
from photovault.services.themes.service import ThemeService

router = APIRouter(tags=["themes"])


@router.get("/themes", response_model=list[ThemeOut])
def list_themes(db: Session = Depends(get_db)):
    return ThemeService(db).list_enabled()
