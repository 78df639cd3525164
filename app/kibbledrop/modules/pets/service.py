from __future__ import annotations

from typing import TYPE_CHECKING

from app.kibbledrop.audit import record_event
from app.kibbledrop.utils import iso, parse_float, parse_int, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.kibbledrop.models import User
    from app.kibbledrop.modules.pets.models import PetProfile


def serialize_pet(p: "PetProfile") -> dict:
    return {
        "id": p.id,
        "user_id": p.user_id,
        "name": p.name,
        "type": p.type,
        "breed": p.breed,
        "age": p.age,
        "weight": p.weight,
        "health_tags": list(p.health_tags or []),
        "created_at": iso(p.created_at),
    }


def _health_tags(raw) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, list):
        raise ValueError("health_tags must be a list")
    return [str(t).strip() for t in raw if str(t).strip()]


def _clean(payload: dict, *, partial: bool) -> dict:
    """Normalize a pet payload; raises ValueError listing what is wrong."""
    out: dict = {}
    missing = []
    for key in ("name", "type", "breed"):
        if key not in payload and partial:
            continue
        val = str(payload.get(key) or "").strip()
        if not val:
            missing.append(key)
        out[key] = val

    if "age" in payload or not partial:
        age = parse_int(payload.get("age"))
        if age is None or age < 0:
            missing.append("age")
        out["age"] = age
    if "weight" in payload or not partial:
        weight = parse_float(payload.get("weight"))
        if weight is None or weight <= 0:
            missing.append("weight")
        out["weight"] = weight
    if missing:
        raise ValueError(f"Missing or invalid fields: {', '.join(missing)}")

    if "health_tags" in payload or not partial:
        out["health_tags"] = _health_tags(payload.get("health_tags"))
    return out


def create_pet(s: "Session", payload: dict, user: "User") -> "PetProfile":
    from app.kibbledrop.modules.pets.models import PetProfile

    data = _clean(payload, partial=False)
    now = utcnow()
    pet = PetProfile(user_id=user.id, created_at=now, updated_at=now, **data)
    s.add(pet)
    s.flush()
    record_event(s, actor=user, action="pet.create", entity_type="PetProfile", entity_id=str(pet.id), metadata={"name": pet.name})
    return pet


def update_pet(s: "Session", pet: "PetProfile", payload: dict, user: "User") -> "PetProfile":
    data = _clean(payload, partial=True)
    for key, value in data.items():
        setattr(pet, key, value)
    pet.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="pet.edit",
        entity_type="PetProfile",
        entity_id=str(pet.id),
        metadata={"fields": sorted(data)},
    )
    return pet


def delete_pet(s: "Session", pet: "PetProfile", user: "User") -> None:
    from app.kibbledrop.modules.subscriptions.models import Subscription

    # Subscriptions keep running without the pet link.
    s.query(Subscription).filter(Subscription.pet_profile_id == pet.id).update(
        {Subscription.pet_profile_id: None}, synchronize_session=False
    )
    record_event(s, actor=user, action="pet.delete", entity_type="PetProfile", entity_id=str(pet.id), metadata={"name": pet.name})
    s.delete(pet)
