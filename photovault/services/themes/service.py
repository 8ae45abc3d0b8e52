import logging

from sqlalchemy.orm import Session

from photovault.models.theme import Theme
from photovault.services.themes.defaults import DEFAULT_THEMES

logger = logging.getLogger(__name__)

GUIDANCE_PREFIX = ". Additional guidance: "


class ThemeService:
    def __init__(self, db: Session):
        self.db = db

    def list_enabled(self) -> list[Theme]:
        return (
            self.db.query(Theme)
            .filter(Theme.enabled.is_(True))
            .order_by(Theme.order_index.asc())
            .all()
        )

    def get(self, theme_id: str) -> Theme | None:
        return self.db.query(Theme).filter(Theme.id == theme_id).one_or_none()

    def get_enabled(self, theme_id: str) -> Theme | None:
        theme = self.get(theme_id)
        if theme is None or not theme.enabled:
            return None
        return theme

    def seed_defaults(self) -> int:
        """Insert built-in themes that are missing. Existing rows are left as edited."""
        existing = {row[0] for row in self.db.query(Theme.id).all()}
        added = 0
        for index, data in enumerate(DEFAULT_THEMES):
            if data["id"] in existing:
                continue
            self.db.add(Theme(order_index=index, enabled=True, **data))
            added += 1
        if added:
            self.db.commit()
            logger.info("themes_seeded", extra={"count": added})
        return added


def build_prompt(theme: Theme, guidance: str | None = None) -> str:
    """Theme prompt, optionally extended with the user's own guidance."""
    text = (guidance or "").strip()
    if not text:
        return theme.prompt
    return f"{theme.prompt}{GUIDANCE_PREFIX}{text}"
