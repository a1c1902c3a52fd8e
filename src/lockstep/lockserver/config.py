from pydantic_settings import BaseSettings, SettingsConfigDict


class LockServerSettings(BaseSettings):
    host: str = "127.0.0.1"
    port: int = 1524
    # Interval of the background cleanup of expired leases. Expiry itself is
    # evaluated on every request, the sweep only frees memory.
    sweep_interval_seconds: float = 60.0

    model_config = SettingsConfigDict(env_prefix="LOCKSTEP_LOCKSERVER_")
