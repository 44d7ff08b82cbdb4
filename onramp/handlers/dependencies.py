from fastapi import Request

from onramp.services import Services


def get_services(request: Request) -> Services:
    """Services attached to the running application."""
    return request.app.state.services
