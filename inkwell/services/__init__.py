"""Service layer helpers for the Inkwell application."""

from flask import current_app

from .llm_gateway import LLMGateway


def get_gateway() -> LLMGateway:
    """Return the gateway created for the running application."""

    return current_app.extensions["llm_gateway"]
