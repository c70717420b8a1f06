from ..settings import Settings


class TestSettings(Settings):
    debug: bool = True
    database_url: str = "duckdb://:memory:"
    api_title: str = "Canteen Orders API (Test)"
    api_version: str = "1.0.0-test"
    idempotency_requery_attempts: int = 40
    idempotency_requery_delay: float = 0.05
    log_level: str = "WARNING"
