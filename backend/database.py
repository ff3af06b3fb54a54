from motor.motor_asyncio import AsyncIOMotorClient

from config.env import MONGO_URI, validate_production_env

_client = None


def get_db(uri: str | None = None):
    global _client

    if _client is None:
        validate_production_env()
        uri = uri or MONGO_URI
        if not uri:
            raise RuntimeError("MONGODB_URI not set")
        _client = AsyncIOMotorClient(uri)

    return _client.get_default_database()


def close_db() -> None:
    global _client

    if _client is not None:
        _client.close()
        _client = None
