"""
Well-known endpoints: JWKS for access token signature verification.
"""
from fastapi import APIRouter, Depends

from chat_gateway.deps import get_key_manager
from chat_gateway.keys import KeyManager

router = APIRouter()


@router.get("/.well-known/jwks.json")
def jwks_json(key_manager: KeyManager = Depends(get_key_manager)):
    """JSON Web Key Set with the single current signing key."""
    return key_manager.get_jwks()
