from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Frontière transactionnelle d'une opération métier.

    - commit si tout passe
    - rollback puis re-raise sur n'importe quelle erreur : l'appelant ne voit
      jamais une mutation à moitié appliquée
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        logger.debug("Transaction rolled back")
        raise
