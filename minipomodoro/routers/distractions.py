"""
Distraction notes: list, add, remove. Changes show up immediately and are
rolled back if they cannot be saved.
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from minipomodoro.coordinator import SessionCoordinator
from minipomodoro.dependencies import get_coordinator
from minipomodoro.errors import PersistenceError
from minipomodoro.models import ListItem

router = APIRouter(prefix="/api/distractions", tags=["distractions"])


class DistractionList(BaseModel):
    id: str
    items: list[ListItem]


class AddDistractionRequest(BaseModel):
    text: str


def _as_list(coordinator: SessionCoordinator) -> DistractionList:
    return DistractionList(id=coordinator.list_id, items=coordinator.items)


@router.get("", response_model=DistractionList)
async def list_distractions(coordinator: SessionCoordinator = Depends(get_coordinator)):
    return _as_list(coordinator)


@router.post("", response_model=DistractionList, status_code=201)
async def add_distraction(
    req: AddDistractionRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """Append a note to the end of the list."""
    text = req.text.strip()
    if not text:
        raise HTTPException(status_code=422, detail="Distraction text is empty")
    try:
        await coordinator.add_item(text)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=f"Could not save distraction: {e}")
    return _as_list(coordinator)


@router.delete("/{index}", response_model=DistractionList)
async def remove_distraction(index: int, coordinator: SessionCoordinator = Depends(get_coordinator)):
    """Remove the note at position `index` (0-based)."""
    try:
        await coordinator.remove_item(index)
    except IndexError:
        raise HTTPException(status_code=404, detail="Distraction not found")
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=f"Could not remove distraction: {e}")
    return _as_list(coordinator)
