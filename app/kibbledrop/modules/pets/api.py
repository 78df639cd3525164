from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.kibbledrop.db import db_session
from app.kibbledrop.modules.pets.models import PetProfile
from app.kibbledrop.modules.pets.service import create_pet, delete_pet, serialize_pet, update_pet
from app.kibbledrop.rbac import require_login

bp = Blueprint("pets", __name__)


def _own_pet(s, pet_id: int) -> PetProfile:
    pet = s.get(PetProfile, pet_id)
    if not pet or pet.user_id != g.current_user.id:
        abort(404, description="Pet not found")
    return pet


def _json_payload() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description="Expected a JSON object")
    return data


@bp.get("/pets")
@require_login
def pets_list():
    s = db_session()
    pets = (
        s.query(PetProfile)
        .filter(PetProfile.user_id == g.current_user.id)
        .order_by(PetProfile.created_at.desc(), PetProfile.id.desc())
        .all()
    )
    return jsonify([serialize_pet(p) for p in pets])


@bp.post("/pets")
@require_login
def pets_create():
    s = db_session()
    try:
        pet = create_pet(s, _json_payload(), g.current_user)
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    return jsonify(serialize_pet(pet)), 201


@bp.put("/pets/<int:pet_id>")
@require_login
def pets_update(pet_id: int):
    s = db_session()
    pet = _own_pet(s, pet_id)
    try:
        update_pet(s, pet, _json_payload(), g.current_user)
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    return jsonify(serialize_pet(pet))


@bp.delete("/pets/<int:pet_id>")
@require_login
def pets_delete(pet_id: int):
    s = db_session()
    pet = _own_pet(s, pet_id)
    delete_pet(s, pet, g.current_user)
    s.commit()
    return jsonify({"message": "Pet deleted successfully"})
