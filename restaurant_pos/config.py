from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    db_host: str = "localhost"
    db_port: int = 3306
    db_user: str = "root"
    db_password: str = ""
    db_name: str = "restaurant_db"
    database_url: Optional[str] = None
    db_pool_size: int = 10
    db_pool_timeout: int = 30
    db_isolation_level: str = "READ COMMITTED"

    log_level: str = "INFO"
    debug: bool = False

    restaurant_name: str = "Restaurant POS"
    currency: str = "USD"
    restaurant_name_ar: str = ""
    language: str = "en"
    theme_color: str = "#10b981"
    print_receipt: bool = True
    print_kitchen: bool = True
    enforce_status_transitions: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_prefix="", case_sensitive=False, extra="ignore")

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"mysql+pymysql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


settings = Settings()
