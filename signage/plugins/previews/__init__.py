from .service import create_preview, get_preview, purge_expired_previews

__all__ = ["create_preview", "get_preview", "purge_expired_previews"]
