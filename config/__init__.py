from config.settings import IS_PRODUCTION, settings

__all__ = ["settings", "IS_PRODUCTION"]
