import os

from .engine import build_engine, build_session_factory


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


MOULD_RENTAL_DB_URL = _require_env("MOULD_RENTAL_DB_URL")

engine_rental = build_engine(MOULD_RENTAL_DB_URL)

SessionLocalRental = build_session_factory(engine_rental)
