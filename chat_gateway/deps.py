"""
FastAPI dependencies for the process-wide collaborators the app factory stores on app.state.
"""
from fastapi import Request

from chat_gateway.config import Settings
from chat_gateway.credentials import CredentialStore
from chat_gateway.keys import KeyManager


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_key_manager(request: Request) -> KeyManager:
    return request.app.state.key_manager


def get_credential_store(request: Request) -> CredentialStore:
    return request.app.state.credentials


def get_clock(request: Request):
    return request.app.state.clock


def get_prompt_resolver(request: Request):
    return request.app.state.prompts


def get_model_allowlist(request: Request):
    return request.app.state.model_allowlist


def get_orchestrator(request: Request):
    return request.app.state.orchestrator
