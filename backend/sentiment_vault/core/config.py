from typing import List, Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "SENTIMENT-VAULT"
    API_V1_STR: str = "/api/v1"

    # Deployment
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Ledger backend: "memory" (in-process contract) or "web3"
    LEDGER_BACKEND: str = "memory"
    WEB3_PROVIDER_URL: str = "http://127.0.0.1:8545"
    SENTIMENT_CONTRACT_ADDRESS: str = ""
    DEPLOYER_PRIVATE_KEY: str = ""
    TX_GAS_FALLBACK: int = 2000000

    # Record store durability (empty = in-memory only)
    RECORD_STORE_PATH: Optional[str] = None

    # Submission policy
    LABEL_MAX_LENGTH: int = 20
    PLAINTEXT_MIN: int = 0
    PLAINTEXT_MAX: int = 4
    CONFIDENCE_MAX: int = 100

    # External call bounds
    GATEWAY_TIMEOUT_SECONDS: float = 30.0
    ORACLE_TIMEOUT_SECONDS: float = 120.0

    # Auth Settings
    SECRET_KEY: str = "sentiment-vault-dev-secret-change-in-production"
    SESSION_TOKEN_TTL_MINUTES: int = 15
    REQUIRE_SESSION_TOKEN: bool = False

    # Simulated confidential capability
    SIMULATED_CAPABILITY_KEY: str = "sentiment-vault-simulated-kms-key"

    class Config:
        case_sensitive = True
        env_file = ".env"

settings = Settings()
