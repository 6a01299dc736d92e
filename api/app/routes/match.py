from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from .. import repo as auth_repo
from ..auth.deps import get_current_user
from ..config import DISCOVER_DEFAULT_LIMIT
from ..database import SessionLocal
from ..services.matching import (
    calculate_match_percentage,
    fetch_discover_candidates,
    is_age_restricted_for_matching,
    rank_candidates,
)

router = APIRouter()
scaffold_router = APIRouter()


@scaffold_router.get("/health")
def match_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "match"}


@router.get("/discover")
def discover(limit: int = DISCOVER_DEFAULT_LIMIT, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    limit = max(1, min(int(limit), 100))

    own_profile = auth_repo.get_profile(user_id) or {}
    if is_age_restricted_for_matching(own_profile.get("date_of_birth")):
        return {"profiles": [], "age_restricted": True}

    prefs = auth_repo.get_preferences(user_id)
    # Over-fetch so age-restricted candidates dropped in Python don't starve the page.
    with SessionLocal() as db:
        candidates = fetch_discover_candidates(db, user_id, limit * 3)
    ranked = rank_candidates(prefs, candidates)[:limit]
    return jsonable_encoder({"profiles": ranked, "age_restricted": False})


@router.get("/matches")
def matches(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    prefs = auth_repo.get_preferences(user_id)
    out: list[dict[str, Any]] = []
    for row in auth_repo.list_matches(user_id):
        partner = auth_repo.get_public_profile(str(row["partner_id"]))
        if not partner:
            continue
        partner.pop("email", None)
        out.append(
            {
                "match_id": str(row["id"]),
                "matched_at": row.get("created_at"),
                "partner": partner,
                "match": calculate_match_percentage(prefs, partner).as_dict(),
            }
        )
    return jsonable_encoder({"matches": out})
