# assinaturas/config.py
import os
import logging
from dotenv import load_dotenv

# Carrega o .env da raiz do projeto
load_dotenv(dotenv_path=os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".env")))


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "sim", "on")


# Banco
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./assinaturas.db").strip()

# Segredos dos provedores (vazio = aceita sem validar, apenas em dev)
HOTMART_HOTTOK = (os.getenv("HOTMART_HOTTOK") or os.getenv("HOTMART_SECRET") or "").strip()
DOPPUS_SECRET_KEY = (os.getenv("DOPPUS_SECRET_KEY") or "").strip()

# Ativação para e-mail desconhecido cria uma conta provisória
WEBHOOK_CRIAR_USUARIO = _env_bool("WEBHOOK_CRIAR_USUARIO", True)

# Níveis de acesso
NIVEL_BASE = "usuario"
NIVEL_PREMIUM = "premium"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger("assinaturas")
