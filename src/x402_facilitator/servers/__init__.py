from .apps import FacilitatorServer, create_app

__all__ = [
    "FacilitatorServer",
    "create_app",
]
