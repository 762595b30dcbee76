from config.settings import settings, IS_PRODUCTION  # noqa: F401
