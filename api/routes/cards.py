"""
api/routes/cards.py -- Authenticated card routes.

Routes:
  GET /                                -- welcome text
  GET /cards/id/{card_id}/image        -- full size card image
  GET /cards/id/{card_id}/image/small  -- half size card image

The card id is untrusted input. It only ever reaches the filesystem through
ImageResolver, which maps it to a path proven to sit inside the image root.
MalformedIdentifierError (400) and ResourceNotFoundError (404) propagate to
the exception handlers in api/main.py.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse, PlainTextResponse

from auth.dependencies import require_session
from core.resolver import ImageResolver

# Every route on this router requires a valid session.
# Router-level dependency runs before any handler body, so a rejected request
# never reaches the code below.
router = APIRouter(dependencies=[Depends(require_session)])

WELCOME = "Welcome to The Wheel of Time Collectable Card Game (CCG) API"


@router.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return WELCOME


@router.get("/cards/id/{card_id}/image", response_class=FileResponse)
def get_card_image(request: Request, card_id: str) -> FileResponse:
    """Return the full size image of a card."""
    return _serve(request, card_id, "full")


@router.get("/cards/id/{card_id}/image/small", response_class=FileResponse)
def get_card_image_small(request: Request, card_id: str) -> FileResponse:
    """Return the small (half size) image of a card."""
    return _serve(request, card_id, "small")


def _serve(request: Request, card_id: str, variant: str) -> FileResponse:
    resolver: ImageResolver = request.app.state.image_resolver
    resolved = resolver.resolve(card_id, variant)
    return FileResponse(resolved.path, media_type="image/jpeg")
