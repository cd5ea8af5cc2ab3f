from .poet import router as poet_router

__all__ = ["poet_router"]
