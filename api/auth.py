"""
Authentication blueprint:
- POST /auth/register
- POST /auth/login
- POST /auth/refresh
- POST /auth/logout
- POST /auth/forgot-password
- POST /auth/reset-password
- POST /auth/change-password

Handlers only validate input and render results; the flows live in
services.auth_service.AuthService.
"""
from __future__ import annotations

import logging

from flask import Blueprint, request, jsonify, g
from marshmallow import ValidationError

from models.schemas.user import (
    RegisterSchema,
    LoginSchema,
    RefreshTokenSchema,
    ForgotPasswordSchema,
    ResetPasswordSchema,
    ChangePasswordSchema,
    UserOutSchema,
)
from services.auth_service import GENERIC_RESET_ACK
from utils.decorators import get_auth_service, jwt_required

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__)

register_schema = RegisterSchema()
login_schema = LoginSchema()
refresh_schema = RefreshTokenSchema()
forgot_password_schema = ForgotPasswordSchema()
reset_password_schema = ResetPasswordSchema()
change_password_schema = ChangePasswordSchema()
user_out_schema = UserOutSchema()


def _session_response(result, status: int):
    return jsonify(
        {
            "user": user_out_schema.dump(result.user),
            "access_token": result.access_token,
            "refresh_token": result.refresh_token,
            "token_type": "bearer",
        }
    ), status


@bp.post("/register")
def register():
    """
    Register a new user and log them in.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            username: { type: string }
            email: { type: string }
            password: { type: string }
    responses:
      201:
        description: Created (returns user and tokens)
      409:
        description: Username or email already exists
      422:
        description: Validation error
    """
    data = register_schema.load(request.get_json(silent=True) or {})
    result = get_auth_service().register(data["username"], data["email"], data["password"])
    return _session_response(result, 201)


@bp.post("/login")
def login():
    """
    Login: return access_token and refresh_token
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             username: { type: string }
             password: { type: string }
    responses:
      200:
        description: OK (returns tokens)
      401:
        description: Invalid username or password
    """
    data = login_schema.load(request.get_json(silent=True) or {})
    result = get_auth_service().login(data["username"], data["password"])
    return _session_response(result, 200)


@bp.post("/refresh")
def refresh():
    """
    Use a refresh token to obtain new access and refresh tokens (rotation)
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             refresh_token: { type: string }
    responses:
      200:
        description: OK (returns a new token pair)
      401:
        description: Invalid or expired refresh token
    """
    data = refresh_schema.load(request.get_json(silent=True) or {})
    pair = get_auth_service().refresh(data["refresh_token"])
    return jsonify(
        {
            "access_token": pair.access_token,
            "refresh_token": pair.refresh_token,
            "token_type": "bearer",
        }
    ), 200


@bp.post("/logout")
def logout():
    """
    Logout: revokes the presented refresh token
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             refresh_token: { type: string }
    responses:
      200:
        description: Logged out (also when the token was unknown)
    """
    data = refresh_schema.load(request.get_json(silent=True) or {})
    get_auth_service().logout(data["refresh_token"])
    return jsonify({"message": "Successfully logged out."}), 200


@bp.post("/forgot-password")
def forgot_password():
    """
    Request a password reset link
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             email: { type: string }
    responses:
      200:
        description: Generic acknowledgement, whether or not the email is known
    """
    try:
        data = forgot_password_schema.load(request.get_json(silent=True) or {})
    except ValidationError as err:
        logger.warning("Forgot password request with invalid body: %s", err.messages)
        return jsonify({"message": GENERIC_RESET_ACK}), 200
    message = get_auth_service().forgot_password(data["email"])
    return jsonify({"message": message}), 200


@bp.post("/reset-password")
def reset_password():
    """
    Reset a password with a token from the reset email
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             token: { type: string }
             new_password: { type: string }
    responses:
      200:
        description: Password reset; every session is logged out
      400:
        description: Invalid or expired password reset token
    """
    data = reset_password_schema.load(request.get_json(silent=True) or {})
    get_auth_service().reset_password(data["token"], data["new_password"])
    return jsonify({"message": "Password has been reset successfully."}), 200


@bp.post("/change-password")
@jwt_required()
def change_password():
    """
    Change the password of the current user
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             old_password: { type: string }
             new_password: { type: string }
    responses:
      200:
        description: Password changed; every session is logged out
      401:
        description: Unauthorized or wrong old password
    """
    data = change_password_schema.load(request.get_json(silent=True) or {})
    get_auth_service().change_password(g.current_user_id, data["old_password"], data["new_password"])
    return jsonify({"message": "Password changed successfully."}), 200
