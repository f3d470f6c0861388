from __future__ import annotations

from flask import Blueprint, jsonify, g

from models.schemas.user import UserOutSchema
from services.errors import Unauthorized
from utils.decorators import get_auth_service, jwt_required

bp = Blueprint("users", __name__)

user_out_schema = UserOutSchema()


@bp.get("/me")
@jwt_required()
def me():
    """
    Get current user info.
    ---
    tags:
      - Users
    security:
      - Bearer: []
    responses:
      200:
        description: OK
      401:
        description: Unauthorized
    """
    user = get_auth_service().get_user(g.current_user_id)
    if user is None:
        raise Unauthorized()
    return jsonify(
        {
            "data": user_out_schema.dump(user)
        }
    ), 200
